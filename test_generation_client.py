#!/usr/bin/env python3
"""
Test script for the chat-completions client and its fallback behavior
"""
import asyncio
import json

import httpx
from openai import AsyncOpenAI

from ragchat.generation_client import GenerationClient

FALLBACK = "Lo siento, hubo un problema."


def completion_body(content):
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 0,
        "model": "local-model",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
    }


def make_client(handler, **kwargs):
    openai_client = AsyncOpenAI(
        base_url="http://generation.test/v1",
        api_key="test-key",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return GenerationClient(
        model="local-model",
        temperature=0.2,
        max_tokens=128,
        fallback_message=FALLBACK,
        openai_client=openai_client,
        **kwargs,
    )


MESSAGES = [
    {"role": "system", "content": "Responde solo con el contexto."},
    {"role": "user", "content": "CONTEXTO:\nHorario 8 a 17\n\nPREGUNTA: ¿Horario?"},
]


def test_answer_is_returned_stripped():
    print("\n📝 Test: successful completion")
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        assert request.url.path == "/v1/chat/completions"
        return httpx.Response(200, json=completion_body("  La oficina abre de 8 a 17.\n"))

    answer = asyncio.run(make_client(handler).complete(MESSAGES))
    print(f"Answer: {answer!r}")
    assert answer == "La oficina abre de 8 a 17."
    assert requests[0]["model"] == "local-model"
    assert requests[0]["messages"] == MESSAGES
    assert requests[0]["temperature"] == 0.2
    assert requests[0]["max_tokens"] == 128
    print("✅ PASS")


def test_backend_trouble_returns_fallback():
    print("\n📝 Test: failures map to the fallback message")
    responses = [
        httpx.Response(500, json={"error": {"message": "boom"}}),
        httpx.Response(401, json={"error": {"message": "bad key"}}),
        httpx.Response(200, json=completion_body(None)),
        httpx.Response(200, json=completion_body("   ")),
        httpx.Response(200, json={**completion_body("x"), "choices": []}),
    ]
    for response in responses:
        answer = asyncio.run(make_client(lambda request, r=response: r).complete(MESSAGES))
        print(f"  HTTP {response.status_code} -> {answer!r}")
        assert answer == FALLBACK

    def broken(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert asyncio.run(make_client(broken).complete(MESSAGES)) == FALLBACK
    print("✅ PASS")


if __name__ == "__main__":
    test_answer_is_returned_stripped()
    test_backend_trouble_returns_fallback()
    print("\n✅ ALL GENERATION CLIENT TESTS PASSED!")
