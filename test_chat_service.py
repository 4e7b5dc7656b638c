#!/usr/bin/env python3
"""
Test script for the chat flow: retrieval, early refusal, generation and groundedness
"""
import asyncio
import os
import tempfile

from fake_backends import EmbeddingBackend, FakeOpenAI, bag_of_words, make_embedder
from ragchat.chat_service import ChatService, build_prompt, validate_user_message
from ragchat.config import INVALID_INPUT_MESSAGE, Settings
from ragchat.generation_client import GenerationClient
from ragchat.models.rag_models import ChatMessage, Chunk, Role, Verdict
from ragchat.rag.chunk_store import VectorStore
from ragchat.session_store import SessionStore
from ragchat.unanswered_log import UnansweredLog

REFUSAL = "No encontré información sobre eso en la base de conocimiento."
FALLBACK = "Lo siento, hubo un problema al generar la respuesta."

OFFICE_PASSAGES = [
    "Office hours are 8am–5pm Monday to Friday.",
    "The mayor's office phone is 555-0100.",
]

SETTINGS = Settings(
    top_n=3,
    min_words=3,
    min_score=0.65,
    margin_gate=False,
    keyword_gate=False,
    accept_threshold=0.75,
    block_threshold=0.55,
    history_max_messages=10,
    min_message_chars=3,
)


def make_service(answer, unanswered_log=None, delay=0.0, system_message=None):
    store = VectorStore(
        Chunk(id=i, text=text, embedding=tuple(bag_of_words(text)))
        for i, text in enumerate(OFFICE_PASSAGES)
    )
    backend = EmbeddingBackend()
    fake_openai = FakeOpenAI(answer, delay=delay)
    service = ChatService(
        store=store,
        embedder=make_embedder(backend),
        session_store=SessionStore(expiration_seconds=1800, system_message=system_message),
        generator=GenerationClient(model="local-model", fallback_message=FALLBACK, openai_client=fake_openai),
        unanswered_log=unanswered_log,
        settings=SETTINGS,
        refusal_message=REFUSAL,
    )
    return service, backend, fake_openai


def test_grounded_answer_is_delivered_and_stored():
    print("\n📝 Test: office hours question answered from context")
    service, backend, fake_openai = make_service("The office hours are 8am to 5pm.")

    reply = asyncio.run(service.handle("s1", "What are the office hours?"))
    print(f"Reply: {reply.text!r} contextFound={reply.context_found} verdict={reply.verdict}")

    assert reply.context_found is True
    assert reply.verdict == Verdict.ACCEPT
    assert reply.text == "The office hours are 8am to 5pm."

    prompt = fake_openai.requests[0]["messages"]
    assert prompt[0]["role"] == "system"
    assert REFUSAL in prompt[0]["content"]
    assert prompt[-1]["role"] == "user"
    assert OFFICE_PASSAGES[0] in prompt[-1]["content"]
    assert OFFICE_PASSAGES[1] not in prompt[-1]["content"]
    assert prompt[-1]["content"].endswith("PREGUNTA: What are the office hours?")

    history = service.session_store.history("s1")
    assert [(m.role, m.content) for m in history] == [
        (Role.USER, "What are the office hours?"),
        (Role.ASSISTANT, "The office hours are 8am to 5pm."),
    ]
    print("✅ PASS")


def test_unrelated_question_is_refused_without_generation():
    print("\n📝 Test: unrelated question refused early")
    with tempfile.TemporaryDirectory() as tmp:
        log = UnansweredLog(os.path.join(tmp, "unanswered.db"))
        log.init()
        service, _, fake_openai = make_service("Paris.", unanswered_log=log)

        reply = asyncio.run(service.handle("s1", "What is the capital of France?"))
        print(f"Reply: {reply.text!r} contextFound={reply.context_found}")

        assert reply.text == REFUSAL
        assert reply.context_found is False
        assert fake_openai.requests == [], "Generation must not be called without context"

        records = log.records_for("s1")
        assert len(records) == 1
        assert records[0].message == "What is the capital of France?"
        assert records[0].top_score == 0.0
        assert set(records[0].context_fragments) == set(OFFICE_PASSAGES)

        history = service.session_store.history("s1")
        assert [m.content for m in history] == ["What is the capital of France?", REFUSAL]
    print("✅ PASS")


def test_ungrounded_answer_is_replaced_by_refusal():
    print("\n📝 Test: ungrounded answer blocked")
    service, _, fake_openai = make_service("The mayor phone number is 555-0100.")
    reply = asyncio.run(service.handle("s1", "What are the office hours?"))
    assert len(fake_openai.requests) == 1
    assert reply.verdict == Verdict.REJECT
    assert reply.text == REFUSAL
    assert reply.context_found is True
    assert service.session_store.history("s1")[-1].content == REFUSAL
    print("✅ PASS")


def test_generation_failure_delivers_fallback():
    service, _, fake_openai = make_service("")
    reply = asyncio.run(service.handle("s1", "What are the office hours?"))
    assert len(fake_openai.requests) == 1
    assert reply.text == FALLBACK
    assert reply.context_found is True
    assert service.session_store.history("s1")[-1].content == FALLBACK


def test_invalid_input_makes_no_backend_calls():
    print("\n📝 Test: input validation")
    service, backend, fake_openai = make_service("nunca")
    for message in ["", "   ", "?", "12345", "!!!", None, 42]:
        reply = asyncio.run(service.handle("s1", message))
        assert reply.text == INVALID_INPUT_MESSAGE
        assert reply.context_found is False
    assert backend.calls == 0
    assert fake_openai.requests == []
    assert service.session_store.history("s1") is None
    print("✅ PASS")


def test_previous_turns_are_forwarded():
    service, _, fake_openai = make_service("The office hours are 8am to 5pm.")
    asyncio.run(service.handle("s1", "What are the office hours?"))
    asyncio.run(service.handle("s1", "Office hours again?"))

    second_prompt = fake_openai.requests[1]["messages"]
    assert [m["role"] for m in second_prompt] == ["system", "user", "assistant", "user"]
    assert second_prompt[1]["content"] == "What are the office hours?"
    assert second_prompt[2]["content"] == "The office hours are 8am to 5pm."
    assert len(service.session_store.history("s1")) == 4


def test_sessions_are_independent():
    service, _, _ = make_service("The office hours are 8am to 5pm.")

    async def both():
        await asyncio.gather(
            service.handle("A", "What are the office hours?"),
            service.handle("B", "What is the capital of France?"),
        )

    asyncio.run(both())
    assert [m.content for m in service.session_store.history("A")] == [
        "What are the office hours?", "The office hours are 8am to 5pm."
    ]
    assert [m.content for m in service.session_store.history("B")] == [
        "What is the capital of France?", REFUSAL
    ]


def test_same_session_turns_are_not_interleaved():
    print("\n📝 Test: concurrent requests on one session run one after the other")
    service, _, fake_openai = make_service("The office hours are 8am to 5pm.", delay=0.05)

    async def both():
        return await asyncio.gather(
            service.handle("A", "What are the office hours?"),
            service.handle("A", "Office hours again?"),
        )

    replies = asyncio.run(both())
    assert all(r.verdict == Verdict.ACCEPT for r in replies)

    history = service.session_store.history("A")
    print(f"Roles: {[m.role.value for m in history]}")
    assert [m.role for m in history] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
    assert [m.content for m in history[::2]] == ["What are the office hours?", "Office hours again?"]
    assert fake_openai.max_in_flight == 1

    # The second turn saw the complete first exchange
    second_prompt = fake_openai.requests[1]["messages"]
    assert [m["role"] for m in second_prompt] == ["system", "user", "assistant", "user"]
    assert service.session_store.get("A").leases == 0
    print("✅ PASS")


def test_other_sessions_run_concurrently():
    service, _, fake_openai = make_service("The office hours are 8am to 5pm.", delay=0.05)

    async def both():
        await asyncio.gather(
            service.handle("A", "What are the office hours?"),
            service.handle("B", "What are the office hours?"),
        )

    asyncio.run(both())
    assert fake_openai.max_in_flight == 2
    assert len(service.session_store.history("A")) == 2
    assert len(service.session_store.history("B")) == 2


def test_seeded_system_message_is_kept_but_not_forwarded():
    seed = "Eres un asistente útil y siempre respondes en español."
    service, _, fake_openai = make_service("The office hours are 8am to 5pm.", system_message=seed)
    asyncio.run(service.handle("s1", "What are the office hours?"))
    asyncio.run(service.handle("s1", "Office hours again?"))

    history = service.session_store.history("s1")
    assert history[0].role == Role.SYSTEM
    assert history[0].content == seed
    assert [m.role for m in history[1:]] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]

    for request in fake_openai.requests:
        contents = [m["content"] for m in request["messages"]]
        assert seed not in contents
        assert [m["role"] for m in request["messages"]].count("system") == 1


def test_unanswered_log_failure_does_not_break_the_reply():
    with tempfile.TemporaryDirectory() as tmp:
        # Never initialised: the insert fails with "no such table"
        log = UnansweredLog(os.path.join(tmp, "unanswered.db"))
        service, _, _ = make_service("Paris.", unanswered_log=log)
        reply = asyncio.run(service.handle("s1", "What is the capital of France?"))
        assert reply.text == REFUSAL
        assert service.session_store.history("s1")[-1].content == REFUSAL


def test_validate_user_message():
    assert validate_user_message("¿Horario?", 3) is None
    assert validate_user_message("  ñu  ", 2) is None
    assert validate_user_message("ab", 3) == INVALID_INPUT_MESSAGE
    assert validate_user_message("123 456", 3) == INVALID_INPUT_MESSAGE


def test_build_prompt_limits_history():
    history = [ChatMessage(Role.USER if i % 2 == 0 else Role.ASSISTANT, f"m{i}") for i in range(6)]
    history.append(ChatMessage(Role.SYSTEM, "interno"))
    messages = build_prompt("¿Pregunta?", "Contexto", history, REFUSAL, max_history=3)
    assert [m["content"] for m in messages[1:-1]] == ["m4", "m5"]
    assert build_prompt("¿Pregunta?", "Contexto", history, REFUSAL, max_history=0)[1]["role"] == "user"


if __name__ == "__main__":
    test_grounded_answer_is_delivered_and_stored()
    test_unrelated_question_is_refused_without_generation()
    test_ungrounded_answer_is_replaced_by_refusal()
    test_generation_failure_delivers_fallback()
    test_invalid_input_makes_no_backend_calls()
    test_previous_turns_are_forwarded()
    test_sessions_are_independent()
    test_same_session_turns_are_not_interleaved()
    test_other_sessions_run_concurrently()
    test_seeded_system_message_is_kept_but_not_forwarded()
    test_unanswered_log_failure_does_not_break_the_reply()
    test_validate_user_message()
    test_build_prompt_limits_history()
    print("\n✅ ALL CHAT SERVICE TESTS PASSED!")
