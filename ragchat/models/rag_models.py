"""Data model shared by the retrieval core, the session store and the chat service.

Chunks and scored results are frozen so the vector store can be shared across
concurrent requests without copying.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(Enum):
    """Author of a chat message."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Verdict(Enum):
    """Outcome of groundedness validation."""
    ACCEPT = "accept"
    LOW_CONFIDENCE = "low_confidence"
    REJECT = "reject"


class EmptyReason(Enum):
    """Why a retrieval produced no passages."""
    EMPTY_STORE = "empty_store"
    NO_EMBEDDING = "no_embedding"
    BELOW_THRESHOLD = "below_threshold"
    AMBIGUOUS = "ambiguous"
    NO_KEYWORD = "no_keyword"


@dataclass(frozen=True)
class Chunk:
    """A passage of the knowledge document with its embedding.

    Attributes:
        id: Stable sequential id assigned at ingestion.
        text: Trimmed, non-empty passage text.
        embedding: Vector of the store's common dimensionality.
    """
    id: int
    text: str
    embedding: Tuple[float, ...]

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def to_dict(self) -> dict:
        return {"id": self.id, "text": self.text, "embedding": list(self.embedding)}

    @classmethod
    def from_dict(cls, data: dict) -> "Chunk":
        return cls(id=int(data["id"]), text=data["text"], embedding=tuple(data["embedding"]))


@dataclass(frozen=True)
class ScoredChunk:
    """A chunk ranked against one query."""
    chunk_id: int
    text: str
    score: float

    @property
    def word_count(self) -> int:
        return len(self.text.split())


@dataclass
class RetrievalResult:
    """Ranked passages for a query; an empty result means "no relevant context".

    Attributes:
        hits: Passages in descending score order.
        reason: Set when hits is empty.
        top_score: Best raw score before filtering (None if nothing was scored).
        candidates: The best raw candidates, kept for the unanswered log.
    """
    hits: List[ScoredChunk] = field(default_factory=list)
    reason: Optional[EmptyReason] = None
    top_score: Optional[float] = None
    candidates: List[ScoredChunk] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.hits

    @property
    def context(self) -> str:
        return "\n\n".join(hit.text for hit in self.hits)

    def __len__(self) -> int:
        return len(self.hits)

    def __iter__(self):
        return iter(self.hits)


@dataclass
class ValidationResult:
    """Verdict on a generated answer and the text to deliver."""
    verdict: Verdict
    text: str
    score: Optional[float] = None
    method: str = "none"


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "content": self.content,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class UnansweredRecord:
    """A question the corpus could not ground, kept for corpus triage."""
    session_id: str
    message: str
    timestamp: datetime
    context_fragments: Tuple[str, ...] = ()
    top_score: float = 0.0


@dataclass
class ChatReply:
    """What the transport sends back for one user message."""
    text: str
    context_found: bool
    verdict: Optional[Verdict] = None
