# Entry point for the FastAPI app
# Run with: uvicorn ragchat.main:app --host 0.0.0.0 --port 8000
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import asyncio
import logging

from . import config
from .chat_service import ChatService
from .generation_client import GenerationClient
from .rag.chunk_store import load_vector_store
from .rag.embedder import EmbeddingClient
from .session_store import SessionStore, run_periodic_sweep
from .unanswered_log import UnansweredLog

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI()


async def build_service(settings: config.Settings) -> ChatService:
    """Construct every long-lived collaborator once, before serving.

    Raises:
        ConfigError: If the configuration cannot serve requests.
        FileNotFoundError: If there is no cache and the knowledge document is missing.
    """
    config.validate_settings(settings)

    embedder = EmbeddingClient.from_settings(settings)
    store = await load_vector_store(
        settings.document_path,
        settings.cache_path,
        embedder,
        max_words=settings.chunk_max_words,
        delay=settings.embed_batch_delay,
    )
    if len(store) == 0:
        logger.warning("[STARTUP] Vector store is empty, every question will be refused")

    unanswered_log = UnansweredLog(settings.unanswered_db_path)
    unanswered_log.init()

    return ChatService(
        store=store,
        embedder=embedder,
        session_store=SessionStore(settings.session_expiration, system_message=settings.session_system_message),
        generator=GenerationClient.from_settings(settings),
        unanswered_log=unanswered_log,
        settings=settings,
    )


@app.on_event("startup")
async def startup_event():
    settings = config.load_settings()
    service = await build_service(settings)
    app.state.service = service
    app.state.sweep_task = asyncio.create_task(
        run_periodic_sweep(service.session_store, settings.sweep_interval)
    )
    logger.info(f"[STARTUP] Knowledge base loaded with {len(service.store)} chunks")
    logger.info("[STARTUP] Initialization complete")


@app.on_event("shutdown")
async def shutdown_event():
    sweep_task = getattr(app.state, "sweep_task", None)
    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
    service = getattr(app.state, "service", None)
    if service is not None:
        await service.aclose()
    logger.info("[SHUTDOWN] Background tasks stopped and clients closed")


def get_service(request: Request) -> ChatService:
    return request.app.state.service


@app.get("/")
async def root(request: Request):
    service = get_service(request)
    return {
        "status": "ok",
        "chunks": len(service.store),
        "sessions": len(service.session_store),
    }


@app.get("/new-session")
async def new_session(request: Request):
    session_id = get_service(request).session_store.create_session()
    return {"sessionId": session_id}


@app.post("/chat")
async def chat(request: Request):
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "JSON inválido"})
    if not isinstance(payload, dict):
        return JSONResponse(status_code=400, content={"error": "JSON inválido"})

    session_id = payload.get("sessionId")
    message = payload.get("message")
    if not session_id or not isinstance(session_id, str):
        return JSONResponse(status_code=400, content={"error": "Falta sessionId"})

    reply = await get_service(request).handle(session_id, message)
    return {"textResponse": reply.text, "contextFound": reply.context_found}


@app.get("/history/{session_id}")
async def history(session_id: str, request: Request):
    messages = get_service(request).session_store.history(session_id)
    if messages is None:
        return JSONResponse(status_code=404, content={"error": "Sesión no encontrada"})
    return [m.to_dict() for m in messages]
