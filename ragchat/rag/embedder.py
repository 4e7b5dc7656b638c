"""
Embedder module for turning text into vectors via the embedding backend.

Talks to an OpenAI-compatible ``/v1/embeddings`` endpoint over httpx and
decodes the reply against one documented schema. Anything unexpected
(transport error, non-2xx status, unparsable body, missing vector) is logged
and reported as an omitted embedding (None); a single unembeddable passage
never aborts ingestion of the rest.
"""

import asyncio
import logging
import math
import re
from typing import List, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ragchat import config

logger = logging.getLogger(__name__)

PURPOSE_PASSAGE = "passage"
PURPOSE_QUERY = "query"

# Keep tab/newline/CR, printable ASCII and the BMP outside control and surrogate ranges
_UNSAFE_CHARS_RE = re.compile(r"[^\t\n\r\x20-\x7E\u00A0-\uD7FF\uE000-\uFFFD]")
_SPACES_RE = re.compile(r"[ \t]{2,}")

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class EmbeddingDatum(BaseModel):
    model_config = ConfigDict(strict=True)

    embedding: List[float]

    @field_validator("embedding")
    @classmethod
    def _non_empty_finite(cls, value: List[float]) -> List[float]:
        if not value:
            raise ValueError("embedding is empty")
        if not all(math.isfinite(v) for v in value):
            raise ValueError("embedding contains non-finite values")
        return value


class EmbeddingResponse(BaseModel):
    """The only accepted reply shape: ``{"data": [{"embedding": [...]}, ...]}``."""
    model_config = ConfigDict(strict=True)

    data: List[EmbeddingDatum]

    @field_validator("data")
    @classmethod
    def _at_least_one(cls, value: List[EmbeddingDatum]) -> List[EmbeddingDatum]:
        if not value:
            raise ValueError("data is empty")
        return value


class _RetryableStatus(Exception):
    def __init__(self, status_code: int):
        super().__init__(f"retryable status {status_code}")
        self.status_code = status_code


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, (httpx.TransportError, _RetryableStatus))


def clean_text(text: str) -> str:
    """Strip control and non-printable characters and collapse runs of spaces."""
    if not text:
        return ""
    cleaned = _UNSAFE_CHARS_RE.sub("", text)
    cleaned = _SPACES_RE.sub(" ", cleaned)
    return cleaned.strip()


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """
    Compute cosine similarity between two vectors.

    Args:
        vec_a: First vector
        vec_b: Second vector

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector is empty or has zero magnitude.

    Raises:
        ValueError: If the vectors have different dimensions.
    """
    if len(vec_a) != len(vec_b):
        raise ValueError(f"Vector dimensions must match: {len(vec_a)} != {len(vec_b)}")
    if not vec_a:
        return 0.0

    # Scale by the largest component so squares of huge values cannot overflow
    scale_a = max(abs(a) for a in vec_a)
    scale_b = max(abs(b) for b in vec_b)
    if scale_a == 0 or scale_b == 0 or not math.isfinite(scale_a) or not math.isfinite(scale_b):
        return 0.0
    vec_a = [a / scale_a for a in vec_a]
    vec_b = [b / scale_b for b in vec_b]

    dot_product = math.fsum(a * b for a, b in zip(vec_a, vec_b))
    magnitude_a = math.sqrt(math.fsum(a * a for a in vec_a))
    magnitude_b = math.sqrt(math.fsum(b * b for b in vec_b))

    denominator = magnitude_a * magnitude_b
    if denominator == 0:
        return 0.0

    score = dot_product / denominator
    if not math.isfinite(score):
        return 0.0
    # Rounding can push |score| a hair past 1
    return max(-1.0, min(1.0, score))


class EmbeddingClient:
    """
    Client for the embedding backend.

    The same instance is shared by ingestion, retrieval and groundedness
    validation. It owns one ``httpx.AsyncClient``; call ``aclose()`` at shutdown.
    """

    def __init__(
        self,
        api_url: str = None,
        model: str = None,
        timeout: float = None,
        max_attempts: int = None,
        min_chars_passage: int = None,
        min_chars_query: int = None,
        max_chars: int = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url or config.EMBEDDING_API_URL
        self.model = model or config.EMBEDDING_MODEL
        self.timeout = timeout if timeout is not None else config.EMBEDDING_TIMEOUT_SECONDS
        self.max_attempts = max(1, max_attempts if max_attempts is not None else config.EMBEDDING_MAX_ATTEMPTS)
        self.min_chars = {
            PURPOSE_PASSAGE: min_chars_passage if min_chars_passage is not None else config.EMBED_MIN_CHARS_PASSAGE,
            PURPOSE_QUERY: min_chars_query if min_chars_query is not None else config.EMBED_MIN_CHARS_QUERY,
        }
        self.max_chars = max_chars if max_chars is not None else config.EMBED_MAX_CHARS
        self._client = http_client or httpx.AsyncClient(timeout=self.timeout)

    @classmethod
    def from_settings(cls, settings: config.Settings, http_client: Optional[httpx.AsyncClient] = None) -> "EmbeddingClient":
        return cls(
            api_url=settings.embedding_url,
            model=settings.embedding_model,
            timeout=settings.embedding_timeout,
            max_attempts=settings.embedding_max_attempts,
            min_chars_passage=settings.embed_min_chars_passage,
            min_chars_query=settings.embed_min_chars_query,
            max_chars=settings.embed_max_chars,
            http_client=http_client,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def prepare(self, text: str, purpose: str = PURPOSE_QUERY) -> Optional[str]:
        """Clean and truncate ``text``; None if it is too short to embed."""
        cleaned = clean_text(text)
        min_chars = self.min_chars.get(purpose, self.min_chars[PURPOSE_QUERY])
        if len(cleaned) < min_chars:
            return None
        # The backend rejects long inputs without documenting the limit
        return cleaned[:self.max_chars]

    async def embed(self, text: str, purpose: str = PURPOSE_QUERY) -> Optional[List[float]]:
        """Generate an embedding for a single text.

        Args:
            text: Text to embed.
            purpose: "passage" for corpus chunks, "query" for live text.

        Returns:
            Embedding vector, or None if the text was omitted or the backend failed.
        """
        prepared = self.prepare(text, purpose)
        if prepared is None:
            logger.info(f"[EMBEDDER] Omitted {purpose} shorter than minimum: {(text or '')[:40]!r}")
            return None

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                retry=retry_if_exception(_is_retryable),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    response = await self._post(prepared)
        except httpx.HTTPError as e:
            logger.error(f"[EMBEDDER] Request to {self.api_url} failed: {type(e).__name__}: {e}")
            return None
        except _RetryableStatus as e:
            logger.error(f"[EMBEDDER] Backend returned HTTP {e.status_code} after {self.max_attempts} attempt(s)")
            return None

        if not response.is_success:
            logger.error(f"[EMBEDDER] Backend returned HTTP {response.status_code}: {response.text[:200]}")
            return None

        return self._decode(response)

    async def _post(self, prepared: str) -> httpx.Response:
        response = await self._client.post(
            self.api_url,
            json={"model": self.model, "input": prepared},
            timeout=self.timeout,
        )
        if response.status_code in RETRYABLE_STATUS_CODES and self.max_attempts > 1:
            raise _RetryableStatus(response.status_code)
        return response

    def _decode(self, response: httpx.Response) -> Optional[List[float]]:
        try:
            parsed = EmbeddingResponse.model_validate_json(response.content)
        except ValidationError as e:
            logger.error(f"[EMBEDDER] Unexpected response shape: {e.error_count()} error(s), body={response.text[:200]!r}")
            return None
        return parsed.data[0].embedding

    async def embed_many(
        self,
        texts: Sequence[str],
        purpose: str = PURPOSE_PASSAGE,
        delay: float = 0.0,
    ) -> List[Optional[List[float]]]:
        """Embed texts one by one with a fixed pause between backend calls.

        Returns:
            One entry per input text; None where the text was omitted or failed.
        """
        embeddings = []
        for i, text in enumerate(texts):
            if i and delay > 0:
                await asyncio.sleep(delay)
            embeddings.append(await self.embed(text, purpose))
        omitted = sum(1 for e in embeddings if e is None)
        logger.info(f"[EMBEDDER] Embedded {len(texts) - omitted}/{len(texts)} {purpose} texts ({self.model})")
        return embeddings
