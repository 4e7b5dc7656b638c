#!/usr/bin/env python3
"""
Test script for the HTTP endpoints (startup is bypassed; the service is injected)
"""
import uuid

from fastapi.testclient import TestClient

from ragchat.config import INVALID_INPUT_MESSAGE
from ragchat.main import app
from test_chat_service import REFUSAL, make_service


def make_client(answer="The office hours are 8am to 5pm.", system_message=None):
    service, _, fake_openai = make_service(answer, system_message=system_message)
    app.state.service = service
    return TestClient(app), fake_openai


def test_health():
    client, _ = make_client()
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "chunks": 2, "sessions": 0}


def test_chat_round_trip_and_history():
    print("\n📝 Test: POST /chat then GET /history")
    client, _ = make_client()

    response = client.post("/chat", json={"sessionId": "abc", "message": "What are the office hours?"})
    print(f"Response: {response.json()}")
    assert response.status_code == 200
    assert response.json() == {"textResponse": "The office hours are 8am to 5pm.", "contextFound": True}

    history = client.get("/history/abc")
    assert history.status_code == 200
    body = history.json()
    assert [m["role"] for m in body] == ["user", "assistant"]
    assert body[0]["content"] == "What are the office hours?"
    assert "createdAt" in body[0]
    print("✅ PASS")


def test_chat_refusal_reports_no_context():
    client, fake_openai = make_client()
    response = client.post("/chat", json={"sessionId": "abc", "message": "What is the capital of France?"})
    assert response.status_code == 200
    assert response.json() == {"textResponse": REFUSAL, "contextFound": False}
    assert fake_openai.requests == []


def test_chat_requires_session_id():
    print("\n📝 Test: request validation")
    client, _ = make_client()
    for payload in [{"message": "Hola"}, {"sessionId": "", "message": "Hola"}, {"sessionId": 7, "message": "Hola"}]:
        response = client.post("/chat", json=payload)
        assert response.status_code == 400
        assert response.json() == {"error": "Falta sessionId"}

    response = client.post("/chat", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"error": "JSON inválido"}

    response = client.post("/chat", json=["sessionId", "abc"])
    assert response.status_code == 400
    print("✅ PASS")


def test_chat_rejects_empty_message_with_canned_text():
    client, fake_openai = make_client()
    response = client.post("/chat", json={"sessionId": "abc", "message": ""})
    assert response.status_code == 200
    assert response.json() == {"textResponse": INVALID_INPUT_MESSAGE, "contextFound": False}
    assert fake_openai.requests == []


def test_new_session_creates_seeded_session():
    print("\n📝 Test: GET /new-session")
    seed = "Eres un asistente útil y siempre respondes en español."
    client, _ = make_client(system_message=seed)

    response = client.get("/new-session")
    assert response.status_code == 200
    session_id = response.json()["sessionId"]
    uuid.UUID(session_id)
    assert client.get("/new-session").json()["sessionId"] != session_id

    history = client.get(f"/history/{session_id}").json()
    assert history == [{"role": "system", "content": seed, "createdAt": history[0]["createdAt"]}]

    client.post("/chat", json={"sessionId": session_id, "message": "What are the office hours?"})
    roles = [m["role"] for m in client.get(f"/history/{session_id}").json()]
    assert roles == ["system", "user", "assistant"]
    assert client.get("/").json()["sessions"] == 2
    print("✅ PASS")


def test_unknown_session_history_is_404():
    client, _ = make_client()
    response = client.get("/history/desconocida")
    assert response.status_code == 404
    assert response.json() == {"error": "Sesión no encontrada"}


if __name__ == "__main__":
    test_health()
    test_chat_round_trip_and_history()
    test_chat_refusal_reports_no_context()
    test_chat_requires_session_id()
    test_chat_rejects_empty_message_with_canned_text()
    test_new_session_creates_seeded_session()
    test_unknown_session_history_is_404()
    print("\n✅ ALL HTTP TESTS PASSED!")
