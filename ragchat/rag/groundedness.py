"""
Groundedness validation for generated answers.

Checks that an answer is supported by the retrieved context before it is
stored or returned. The primary check compares the answer embedding with the
embedding of every context passage; when the embedding backend cannot serve
one of those texts, a lexical Jaccard comparison takes over so a decision is
still made instead of passing an unverified answer through.
"""

import logging
import re
from typing import List, Optional

from ragchat import config
from ragchat.config import Settings
from ragchat.models.rag_models import ValidationResult, Verdict
from .embedder import PURPOSE_QUERY, EmbeddingClient, cosine_similarity
from .text_utils import content_tokens, jaccard_similarity

logger = logging.getLogger(__name__)

METHOD_EMBEDDING = "embedding"
METHOD_LEXICAL = "lexical"

_BLANK_LINE_RE = re.compile(r"\n\s*\n")


def split_context(context: str, max_passages: int) -> List[str]:
    """Split a prompt context back into its passages at blank lines."""
    passages = [p.strip() for p in _BLANK_LINE_RE.split(context or "")]
    return [p for p in passages if p][:max_passages]


def lexical_score(answer: str, passages: List[str]) -> float:
    """Max Jaccard similarity between the answer and any passage."""
    answer_tokens = content_tokens(answer)
    if not answer_tokens:
        return 0.0
    return max((jaccard_similarity(answer_tokens, content_tokens(p)) for p in passages), default=0.0)


class GroundednessValidator:
    """Classifies answers as accept / low_confidence / reject."""

    def __init__(self, embedder: EmbeddingClient, settings: Settings = None, refusal_message: str = None):
        self.embedder = embedder
        self.settings = settings or Settings()
        self.refusal_message = refusal_message or config.REFUSAL_MESSAGE

    async def validate(self, answer: str, context: str) -> ValidationResult:
        """Validate a generated answer against the context it was generated from.

        Args:
            answer: Raw answer from the generation backend.
            context: Passages handed to the prompt, blank-line separated.

        Returns:
            ValidationResult. Rejected answers carry the refusal text; low
            confidence answers carry the answer prefixed with the score.
        """
        if answer == self.refusal_message:
            return ValidationResult(Verdict.REJECT, self.refusal_message)

        passages = split_context(context, self.settings.validation_max_passages)
        if not passages:
            logger.warning("[GROUNDEDNESS] Blank context, rejecting answer")
            return ValidationResult(Verdict.REJECT, self.refusal_message)

        score = await self._embedding_score(answer, passages)
        if score is not None:
            return self._classify(
                answer,
                score,
                METHOD_EMBEDDING,
                self.settings.accept_threshold,
                self.settings.block_threshold,
            )

        logger.warning("[GROUNDEDNESS] Embedding check unavailable, using lexical fallback")
        return self._classify(
            answer,
            lexical_score(answer, passages),
            METHOD_LEXICAL,
            self.settings.lexical_accept_threshold,
            self.settings.lexical_block_threshold,
        )

    async def _embedding_score(self, answer: str, passages: List[str]) -> Optional[float]:
        answer_embedding = await self.embedder.embed(answer, purpose=PURPOSE_QUERY)
        if answer_embedding is None:
            return None

        best = None
        for passage in passages:
            passage_embedding = await self.embedder.embed(passage, purpose=PURPOSE_QUERY)
            if passage_embedding is None:
                return None
            try:
                score = cosine_similarity(answer_embedding, passage_embedding)
            except ValueError as e:
                logger.error(f"[GROUNDEDNESS] {e}")
                return None
            best = score if best is None else max(best, score)
        return best

    def _classify(
        self,
        answer: str,
        score: float,
        method: str,
        accept_threshold: float,
        block_threshold: float,
    ) -> ValidationResult:
        if score >= accept_threshold:
            verdict, text = Verdict.ACCEPT, answer
        elif score < block_threshold:
            verdict, text = Verdict.REJECT, self.refusal_message
        else:
            verdict = Verdict.LOW_CONFIDENCE
            text = config.LOW_CONFIDENCE_PREFIX.format(score=score) + answer

        logger.info(f"[GROUNDEDNESS] {verdict.value} ({method} score {score:.3f})")
        return ValidationResult(verdict=verdict, text=text, score=score, method=method)
