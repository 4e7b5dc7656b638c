"""
Retriever module for semantic passage retrieval at query time.

Embeds the user question, ranks every passage of the vector store by cosine
similarity and runs the configured filter stages over that one ranked list.
An empty result is the "insufficient grounding" signal: callers must not
call the generation backend when they get one.
"""

import logging
from typing import List, Optional, Sequence

from ragchat.config import Settings
from ragchat.models.rag_models import EmptyReason, RetrievalResult, ScoredChunk
from .chunk_store import VectorStore
from .embedder import PURPOSE_QUERY, EmbeddingClient, cosine_similarity
from .filters import FilterStage, apply_stages, build_stages, stages_from_settings

logger = logging.getLogger(__name__)

# Raw candidates kept on an empty result for the unanswered log
CANDIDATES_KEPT = 3


def rank_chunks(query_embedding: Sequence[float], store: VectorStore) -> List[ScoredChunk]:
    """Score every chunk and sort by descending score, ties by chunk id."""
    scored = []
    for chunk in store:
        try:
            score = cosine_similarity(query_embedding, chunk.embedding)
        except ValueError as e:
            logger.warning(f"[RETRIEVER] Skipping chunk {chunk.id}: {e}")
            continue
        scored.append(ScoredChunk(chunk_id=chunk.id, text=chunk.text, score=score))
    scored.sort(key=lambda h: (-h.score, h.chunk_id))
    return scored


class Retriever:
    """Ranks the vector store for a query and applies the retrieval policy."""

    def __init__(self, store: VectorStore, embedder: EmbeddingClient, settings: Settings = None):
        self.store = store
        self.embedder = embedder
        self.settings = settings or Settings()

    async def retrieve(
        self,
        query: str,
        top_n: int = None,
        min_words: int = None,
        min_score: float = None,
        stages: Optional[Sequence[FilterStage]] = None,
    ) -> RetrievalResult:
        """Retrieve the relevant passages for a query.

        Args:
            query: The user question.
            top_n: Override for the maximum number of passages.
            min_words: Override for the minimum passage word count.
            min_score: Override for the cosine floor.
            stages: Explicit stage list; replaces the configured policy.

        Returns:
            RetrievalResult; empty when nothing is relevant enough.
        """
        if len(self.store) == 0:
            logger.warning("[RETRIEVER] Vector store is empty")
            return RetrievalResult(reason=EmptyReason.EMPTY_STORE)

        query_embedding = await self.embedder.embed(query, purpose=PURPOSE_QUERY)
        if query_embedding is None:
            logger.warning(f"[RETRIEVER] No embedding for query {query[:80]!r}, failing closed")
            return RetrievalResult(reason=EmptyReason.NO_EMBEDDING)

        ranked = rank_chunks(query_embedding, self.store)
        if not ranked:
            return RetrievalResult(reason=EmptyReason.BELOW_THRESHOLD)

        if stages is None:
            if top_n is None and min_words is None and min_score is None:
                stages = stages_from_settings(self.settings)
            else:
                s = self.settings
                stages = build_stages(
                    top_n=top_n if top_n is not None else s.top_n,
                    min_words=min_words if min_words is not None else s.min_words,
                    min_score=min_score if min_score is not None else s.min_score,
                    margin=s.margin if s.margin_gate else None,
                    keyword_gate=s.keyword_gate,
                )

        hits, reason = apply_stages(ranked, query, stages)
        result = RetrievalResult(
            hits=hits,
            reason=reason,
            top_score=ranked[0].score,
            candidates=ranked[:CANDIDATES_KEPT],
        )

        if result.is_empty:
            logger.info(
                f"[RETRIEVER] No passage accepted ({reason.value}), best score "
                f"{ranked[0].score:.3f} for query: {query[:80]}"
            )
        else:
            logger.info(
                f"[RETRIEVER] Retrieved {len(hits)} passages "
                f"(scores {', '.join(f'{h.score:.3f}' for h in hits)}) for query: {query[:80]}"
            )
        return result
