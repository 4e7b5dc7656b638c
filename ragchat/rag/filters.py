"""
Filter stages applied to the ranked passage list.

Every retrieval policy is an ordered list of stages over the same ranked
list (descending score, ties by chunk id). A stage returns the hits it keeps;
the first stage that returns nothing decides why the result is empty.
"""

import logging
from typing import List, Sequence

from ragchat.config import Settings
from ragchat.models.rag_models import EmptyReason, ScoredChunk
from .text_utils import contains_any_keyword, extract_keywords

logger = logging.getLogger(__name__)


class FilterStage:
    """Base stage: keep everything."""

    empty_reason = EmptyReason.BELOW_THRESHOLD

    def apply(self, hits: List[ScoredChunk], query: str) -> List[ScoredChunk]:
        return hits

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({fields})"


class MarginGate(FilterStage):
    """Reject the whole list when top-1 and top-2 are too close to tell apart."""

    empty_reason = EmptyReason.AMBIGUOUS

    def __init__(self, margin: float):
        self.margin = margin

    def apply(self, hits, query):
        if len(hits) < 2:
            return hits
        gap = hits[0].score - hits[1].score
        if gap < self.margin:
            logger.info(
                f"[RETRIEVER] Ambiguous query: top1 ({hits[0].score:.3f}) and "
                f"top2 ({hits[1].score:.3f}) within {self.margin}"
            )
            return []
        return hits


class ScoreFloor(FilterStage):
    def __init__(self, min_score: float):
        self.min_score = min_score

    def apply(self, hits, query):
        return [h for h in hits if h.score >= self.min_score]


class MinWords(FilterStage):
    def __init__(self, min_words: int):
        self.min_words = min_words

    def apply(self, hits, query):
        return [h for h in hits if h.word_count >= self.min_words]


class KeywordGate(FilterStage):
    """The best remaining passage must contain a content keyword of the query."""

    empty_reason = EmptyReason.NO_KEYWORD

    def apply(self, hits, query):
        if not hits:
            return hits
        keywords = extract_keywords(query)
        if not keywords:
            logger.info(f"[RETRIEVER] No content keywords in query {query[:80]!r}")
            return []
        if not contains_any_keyword(hits[0].text, keywords):
            logger.info(
                f"[RETRIEVER] Best passage (chunk {hits[0].chunk_id}) contains none of {keywords}"
            )
            return []
        return hits


class TopN(FilterStage):
    def __init__(self, top_n: int):
        self.top_n = top_n

    def apply(self, hits, query):
        return hits[:self.top_n]


def build_stages(
    top_n: int,
    min_words: int,
    min_score: float,
    margin: float = None,
    keyword_gate: bool = False,
) -> List[FilterStage]:
    """Assemble the stage list for one retrieval.

    Args:
        top_n: Maximum passages returned.
        min_words: Minimum passage length in words.
        min_score: Cosine floor.
        margin: If set, enable the top-1/top-2 margin gate with this gap.
        keyword_gate: Enable the query-keyword gate on the best passage.

    Returns:
        Ordered list of stages.
    """
    stages: List[FilterStage] = []
    if margin is not None:
        stages.append(MarginGate(margin))
    stages.append(ScoreFloor(min_score))
    stages.append(MinWords(min_words))
    if keyword_gate:
        stages.append(KeywordGate())
    stages.append(TopN(top_n))
    return stages


def stages_from_settings(settings: Settings) -> List[FilterStage]:
    return build_stages(
        top_n=settings.top_n,
        min_words=settings.min_words,
        min_score=settings.min_score,
        margin=settings.margin if settings.margin_gate else None,
        keyword_gate=settings.keyword_gate,
    )


def apply_stages(hits: List[ScoredChunk], query: str, stages: Sequence[FilterStage]):
    """Run the stages in order.

    Returns:
        Tuple of (surviving hits, reason or None).
    """
    for stage in stages:
        hits = stage.apply(hits, query)
        if not hits:
            return [], stage.empty_reason
    return hits, None
