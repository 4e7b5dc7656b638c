"""
Vector store for the embedded knowledge passages.

The store is built once at startup and is read-only afterwards, so request
handlers share it without locking. It is backed by a JSON cache artifact:
when the artifact exists it is loaded verbatim and ingestion is skipped;
otherwise the document is chunked, embedded and the result persisted.
"""

import json
import logging
import os
import tempfile
from typing import Iterator, List, Optional, Sequence, Tuple

from ragchat.models.rag_models import Chunk
from .chunker import load_document, split_into_passages
from .embedder import PURPOSE_PASSAGE, EmbeddingClient

logger = logging.getLogger(__name__)


class VectorStore:
    """Immutable ordered collection of chunks sharing one embedding dimension."""

    def __init__(self, chunks: Sequence[Chunk] = ()):
        chunks = tuple(chunks)
        dims = {len(c.embedding) for c in chunks}
        if len(dims) > 1:
            raise ValueError(f"Chunks have mixed embedding dimensions: {sorted(dims)}")
        self._chunks: Tuple[Chunk, ...] = chunks
        self._dimension: Optional[int] = dims.pop() if dims else None

    @property
    def chunks(self) -> Tuple[Chunk, ...]:
        return self._chunks

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def __len__(self) -> int:
        return len(self._chunks)

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self._chunks)

    def __eq__(self, other) -> bool:
        return isinstance(other, VectorStore) and self._chunks == other._chunks

    def save(self, path: str) -> None:
        """Persist the chunks as a JSON list of ``{id, text, embedding}``.

        Writes to a temp file in the same directory and renames it into place,
        so a crash never leaves a truncated cache behind.
        """
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        payload = [c.to_dict() for c in self._chunks]
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".embeddings-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.info(f"[CHUNK_STORE] Saved {len(self._chunks)} chunks to {path}")

    @classmethod
    def from_file(cls, path: str) -> "VectorStore":
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        store = cls(Chunk.from_dict(item) for item in payload)
        logger.info(f"[CHUNK_STORE] Loaded {len(store)} chunks from cache {path} (dimension {store.dimension})")
        return store


def build_chunks(passages: Sequence[str], embeddings: Sequence[Optional[List[float]]]) -> List[Chunk]:
    """Pair passages with embeddings, dropping omitted or off-dimension vectors.

    Ids are assigned sequentially over the kept chunks.
    """
    chunks = []
    dimension = None
    for index, (text, embedding) in enumerate(zip(passages, embeddings)):
        if embedding is None:
            logger.warning(f"[CHUNK_STORE] Dropping passage {index}: no embedding ({text[:60]!r}...)")
            continue
        if dimension is None:
            dimension = len(embedding)
        elif len(embedding) != dimension:
            logger.warning(
                f"[CHUNK_STORE] Dropping passage {index}: dimension {len(embedding)} != {dimension}"
            )
            continue
        chunks.append(Chunk(id=len(chunks), text=text, embedding=tuple(embedding)))
    return chunks


async def ingest_document(
    document_path: str,
    embedder: EmbeddingClient,
    max_words: int = 0,
    delay: float = 0.0,
) -> VectorStore:
    """Chunk and embed the knowledge document into a fresh store.

    Raises:
        FileNotFoundError: If the document is missing.
    """
    text = load_document(document_path)
    passages = split_into_passages(text, max_words=max_words)
    embeddings = await embedder.embed_many(passages, purpose=PURPOSE_PASSAGE, delay=delay)
    chunks = build_chunks(passages, embeddings)
    logger.info(f"[CHUNK_STORE] Ingested {len(chunks)}/{len(passages)} passages from {document_path}")
    return VectorStore(chunks)


async def load_vector_store(
    document_path: str,
    cache_path: str,
    embedder: EmbeddingClient,
    max_words: int = 0,
    delay: float = 0.0,
) -> VectorStore:
    """Load the store from the cache artifact, or build and persist it.

    A present cache is trusted as-is; it is not compared against the current
    document. Delete the artifact to force re-ingestion. Not safe to run
    concurrently with itself.

    Args:
        document_path: Knowledge document used on a cache miss.
        cache_path: JSON cache artifact.
        embedder: Client used to embed passages on a cache miss.
        max_words: Word window passed to the chunker.
        delay: Pause between embedding calls during ingestion.

    Returns:
        The loaded or freshly built VectorStore.
    """
    if os.path.exists(cache_path):
        return VectorStore.from_file(cache_path)

    logger.info(f"[CHUNK_STORE] No cache at {cache_path}, ingesting {document_path}")
    store = await ingest_document(document_path, embedder, max_words=max_words, delay=delay)
    store.save(cache_path)
    return store
