"""
Offline stand-ins for the embedding and generation backends used by the test scripts.

The embedding backend is the real EmbeddingClient talking to an
httpx.MockTransport, so request building and response decoding are exercised.
"""
import asyncio
import json
from typing import Callable, Dict, List, Optional, Sequence

import httpx

from ragchat.rag.embedder import EmbeddingClient
from ragchat.rag.text_utils import tokenize

EMBEDDING_URL = "http://embeddings.test/v1/embeddings"

# Bag-of-words vocabulary for the office-hours scenario
OFFICE_VOCABULARY = ["office", "hours", "phone", "mayor", "capital", "france"]


def bag_of_words(text: str, vocabulary: Sequence[str] = OFFICE_VOCABULARY) -> List[float]:
    tokens = tokenize(text)
    return [float(tokens.count(term)) for term in vocabulary]


class EmbeddingBackend:
    """Serves ``{"data": [{"embedding": ...}]}`` and records every input it received."""

    def __init__(self, embed_fn: Callable[[str], Optional[List[float]]] = bag_of_words):
        self.embed_fn = embed_fn
        self.inputs: List[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.inputs.append(body["input"])
        vector = self.embed_fn(body["input"])
        if vector is None:
            return httpx.Response(503, json={"error": "unavailable"})
        return httpx.Response(200, json={"data": [{"embedding": vector}], "model": body["model"]})

    @property
    def calls(self) -> int:
        return len(self.inputs)


def make_embedder(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> EmbeddingClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("min_chars_passage", 10)
    kwargs.setdefault("min_chars_query", 3)
    return EmbeddingClient(api_url=EMBEDDING_URL, model="test-embedder", http_client=http_client, **kwargs)


def vector_table(table: Dict[str, List[float]]) -> Callable[[str], Optional[List[float]]]:
    """Embed known texts from a lookup table; unknown texts make the backend fail."""
    return lambda text: table.get(text)


class FakeCompletions:
    def __init__(self, owner):
        self.owner = owner

    async def create(self, **kwargs):
        self.owner.requests.append(kwargs)
        self.owner.in_flight += 1
        self.owner.max_in_flight = max(self.owner.max_in_flight, self.owner.in_flight)
        try:
            if self.owner.delay:
                await asyncio.sleep(self.owner.delay)
            return self.owner.make_response()
        finally:
            self.owner.in_flight -= 1


class FakeChat:
    def __init__(self, owner):
        self.completions = FakeCompletions(owner)


class FakeMessage:
    def __init__(self, content):
        self.content = content


class FakeChoice:
    def __init__(self, content):
        self.message = FakeMessage(content)


class FakeCompletion:
    def __init__(self, content):
        self.choices = [FakeChoice(content)]


class FakeOpenAI:
    """Minimal AsyncOpenAI look-alike returning a fixed answer after an optional delay."""

    def __init__(self, answer: str = "", delay: float = 0.0):
        self.answer = answer
        self.requests: List[dict] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.chat = FakeChat(self)
        self.closed = False

    def make_response(self):
        return FakeCompletion(self.answer)

    async def close(self):
        self.closed = True
