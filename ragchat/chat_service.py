"""
Chat orchestration: one grounded answer per user message.

Flow per message: validate input -> retrieve passages -> refuse early when
nothing is relevant (no generation call, question logged as unanswered) ->
build the grounded prompt -> generate -> validate groundedness -> store the
delivered text in the session.
"""

import asyncio
import logging
import re
import sqlite3
from typing import Dict, List, Optional

from . import config
from .config import Settings
from .generation_client import GenerationClient
from .models.rag_models import ChatMessage, ChatReply, Role, UnansweredRecord, Verdict, utcnow
from .rag.chunk_store import VectorStore
from .rag.embedder import EmbeddingClient
from .rag.groundedness import GroundednessValidator
from .rag.retriever import Retriever
from .session_store import Session, SessionStore
from .unanswered_log import UnansweredLog

logger = logging.getLogger(__name__)

_ALPHA_RE = re.compile(r"[^\W\d_]", re.UNICODE)

SYSTEM_PROMPT = (
    "Eres un asistente que responde preguntas usando únicamente la información del CONTEXTO. "
    "Responde en español, de forma breve y precisa. "
    "Si el CONTEXTO no contiene la respuesta, responde exactamente: \"{refusal}\" "
    "No inventes datos, horarios, teléfonos ni nombres que no aparezcan en el CONTEXTO."
)


def validate_user_message(message: Optional[str], min_chars: int = None) -> Optional[str]:
    """Check a raw user message before any backend call.

    Returns:
        The canned response to send back if the message is rejected, else None.
    """
    min_chars = min_chars if min_chars is not None else config.MIN_MESSAGE_CHARS
    if not isinstance(message, str) or not message.strip():
        return config.INVALID_INPUT_MESSAGE
    text = message.strip()
    if len(text) < min_chars:
        return config.INVALID_INPUT_MESSAGE
    if not _ALPHA_RE.search(text):
        return config.INVALID_INPUT_MESSAGE
    return None


def build_prompt(
    question: str,
    context: str,
    history: List[ChatMessage],
    refusal_message: str,
    max_history: int,
) -> List[Dict[str, str]]:
    """Assemble the chat-completions message list for a grounded answer."""
    messages = [{"role": "system", "content": SYSTEM_PROMPT.format(refusal=refusal_message)}]
    if max_history > 0:
        for msg in history[-max_history:]:
            if msg.role in (Role.USER, Role.ASSISTANT):
                messages.append({"role": msg.role.value, "content": msg.content})
    messages.append({
        "role": "user",
        "content": f"CONTEXTO:\n{context}\n\nPREGUNTA: {question}",
    })
    return messages


class ChatService:
    """Handles chat messages against one vector store and one session store.

    All collaborators are injected; the service is built once at startup and
    shared by every request.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingClient,
        session_store: SessionStore,
        generator: GenerationClient,
        validator: Optional[GroundednessValidator] = None,
        unanswered_log: Optional[UnansweredLog] = None,
        settings: Settings = None,
        refusal_message: str = None,
    ):
        self.settings = settings or Settings()
        self.store = store
        self.embedder = embedder
        self.session_store = session_store
        self.generator = generator
        self.refusal_message = refusal_message or config.REFUSAL_MESSAGE
        self.retriever = Retriever(store, embedder, self.settings)
        self.validator = validator or GroundednessValidator(embedder, self.settings, self.refusal_message)
        self.unanswered_log = unanswered_log

    async def aclose(self) -> None:
        await self.embedder.aclose()
        await self.generator.aclose()

    async def handle(self, session_id: str, message: str) -> ChatReply:
        """Answer one user message within a session.

        Args:
            session_id: Opaque session identifier.
            message: Raw user message.

        Returns:
            ChatReply with the delivered text and whether context was found.
        """
        rejection = validate_user_message(message, self.settings.min_message_chars)
        if rejection is not None:
            logger.info(f"[CHAT] Rejected input for session {session_id}: {str(message)[:40]!r}")
            return ChatReply(text=rejection, context_found=False)

        question = message.strip()
        with self.session_store.lease(session_id) as session:
            async with session.turn_lock:
                return await self._take_turn(session_id, session, question)

    async def _take_turn(self, session_id: str, session: Session, question: str) -> ChatReply:
        history = session.snapshot()
        self.session_store.append(session_id, Role.USER, question)

        result = await self.retriever.retrieve(question)
        if result.is_empty:
            await self._log_unanswered(session_id, question, result)
            self.session_store.append(session_id, Role.ASSISTANT, self.refusal_message)
            return ChatReply(text=self.refusal_message, context_found=False, verdict=Verdict.REJECT)

        prompt = build_prompt(
            question,
            result.context,
            history,
            self.refusal_message,
            self.settings.history_max_messages,
        )
        raw_answer = await self.generator.complete(prompt)

        if raw_answer == self.generator.fallback_message:
            # Backend failure: deliver the apology as-is, there is nothing to validate
            self.session_store.append(session_id, Role.ASSISTANT, raw_answer)
            return ChatReply(text=raw_answer, context_found=True)

        validation = await self.validator.validate(raw_answer, result.context)
        self.session_store.append(session_id, Role.ASSISTANT, validation.text)

        logger.info(
            f"[CHAT] Session {session_id}: {validation.verdict.value} "
            f"({len(result)} passages, top score {result.top_score:.3f})"
        )
        return ChatReply(text=validation.text, context_found=True, verdict=validation.verdict)

    async def _log_unanswered(self, session_id: str, question: str, result) -> None:
        if self.unanswered_log is None:
            return
        record = UnansweredRecord(
            session_id=session_id,
            message=question,
            timestamp=utcnow(),
            context_fragments=tuple(c.text for c in result.candidates),
            top_score=result.top_score if result.top_score is not None else 0.0,
        )
        try:
            # sqlite3 blocks; keep it off the event loop
            await asyncio.to_thread(self.unanswered_log.append, record)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"[UNANSWERED] Failed to log question for session {session_id}: {e}")
