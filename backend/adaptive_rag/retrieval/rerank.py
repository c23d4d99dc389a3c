"""Reranking strategies over an in-memory candidate pool."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from adaptive_rag.models.entities import Chunk, clamp
from adaptive_rag.retrieval.scoring import CorpusStats, bm25_score, build_corpus_stats
from adaptive_rag.utils.text import tokenize

logger = logging.getLogger(__name__)

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


class RerankStrategy(str, Enum):
    BM25 = "bm25"
    KEYWORD_BOOST = "keyword-boost"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


@dataclass(slots=True)
class RerankEvaluation:
    position_changes: dict[str, int]
    average_movement: float
    top_overlap: float


class Reranker:
    """Scores candidates with one of four strategies; failures keep original similarity."""

    def __init__(self, semantic_weight: float = 0.8, keyword_weight: float = 0.2) -> None:
        self.semantic_weight = semantic_weight
        self.keyword_weight = keyword_weight

    def rerank(
        self,
        query: str,
        chunks: Sequence[Chunk],
        strategy: RerankStrategy | str = RerankStrategy.HYBRID,
        top_k: int = 5,
    ) -> list[Chunk]:
        if len(chunks) <= top_k:
            return list(chunks)
        return self.score(query, chunks, strategy)[:top_k]

    def score(
        self,
        query: str,
        chunks: Sequence[Chunk],
        strategy: RerankStrategy | str = RerankStrategy.HYBRID,
    ) -> list[Chunk]:
        """Score and sort the whole pool; the result carries ``rerank_score``."""
        strategy = RerankStrategy(strategy)
        if not chunks:
            return []
        if strategy is RerankStrategy.BM25:
            scores = _normalize_to_max(self._bm25(query, chunks))
        elif strategy is RerankStrategy.KEYWORD_BOOST:
            scores = self._keyword_boost(query, chunks)
        elif strategy is RerankStrategy.SEMANTIC:
            scores = self._semantic(query, chunks)
        else:
            scores = self._hybrid(query, chunks)
        rescored = [chunk.with_rerank_score(value) for chunk, value in zip(chunks, scores)]
        return sorted(rescored, key=lambda chunk: chunk.relevance, reverse=True)

    # Strategies ------------------------------------------------------------

    def _bm25(self, query: str, chunks: Sequence[Chunk]) -> list[float]:
        stats = build_corpus_stats([_safe_text(chunk) for chunk in chunks])
        return _score_each(chunks, lambda chunk: bm25_score(query, stats, chunk.content))

    def _keyword_boost(self, query: str, chunks: Sequence[Chunk]) -> list[float]:
        phrases = query_phrases(query)
        return _score_each(
            chunks,
            lambda chunk: chunk.similarity * 0.6 + keyword_phrase_score(phrases, chunk.content) * 0.4,
        )

    def _semantic(self, query: str, chunks: Sequence[Chunk]) -> list[float]:
        query_terms = set(tokenize(query))

        def _score(chunk: Chunk) -> float:
            content = chunk.content
            coverage = len(query_terms & set(tokenize(content))) / len(query_terms) if query_terms else 0.0
            length_score = min(len(content) / 1000, 1.0)
            sentences = [part for part in _SENTENCE_SPLIT_RE.split(content) if part.strip()]
            coherence = min(len(sentences) / 5, 1.0)
            return chunk.similarity * 0.7 + coverage * 0.2 + length_score * 0.05 + coherence * 0.05

        return _score_each(chunks, _score)

    def _hybrid(self, query: str, chunks: Sequence[Chunk]) -> list[float]:
        bm25 = _normalize_to_max(self._bm25(query, chunks))
        keyword = _normalize_to_max(self._keyword_boost(query, chunks))
        return [
            self.semantic_weight * chunk.similarity
            + self.keyword_weight * 0.6 * bm25_value
            + self.keyword_weight * 0.4 * keyword_value
            for chunk, bm25_value, keyword_value in zip(chunks, bm25, keyword)
        ]


def rerank(
    query: str,
    chunks: Sequence[Chunk],
    strategy: RerankStrategy | str = RerankStrategy.HYBRID,
    top_k: int = 5,
    semantic_weight: float = 0.8,
    keyword_weight: float = 0.2,
) -> list[Chunk]:
    return Reranker(semantic_weight, keyword_weight).rerank(query, chunks, strategy, top_k)


def query_phrases(query: str) -> list[str]:
    """All n-grams of the query, longest first, for n = min(3, word count) down to 1."""
    words = query.lower().split()
    phrases: list[str] = []
    for n in range(min(3, len(words)), 0, -1):
        for start in range(len(words) - n + 1):
            phrases.append(" ".join(words[start : start + n]))
    return phrases


def keyword_phrase_score(phrases: Sequence[str], content: str) -> float:
    """Occurrences weighted by squared phrase length, normalized into [0, 1]."""
    if not phrases:
        return 0.0
    lowered = content.lower()
    raw = 0
    for phrase in phrases:
        occurrences = lowered.count(phrase)
        if occurrences:
            raw += occurrences * len(phrase.split()) ** 2
    return min(raw / (len(phrases) * 2), 1.0)


def evaluate_reranking(original: Sequence[Chunk], reranked: Sequence[Chunk], top_k: int = 5) -> RerankEvaluation:
    """Summarize how far reranking moved each chunk."""
    original_positions = {chunk.chunk_id: index for index, chunk in enumerate(original)}
    changes: dict[str, int] = {}
    for index, chunk in enumerate(reranked):
        before = original_positions.get(chunk.chunk_id)
        if before is not None:
            changes[chunk.chunk_id] = before - index
    average = sum(abs(delta) for delta in changes.values()) / len(changes) if changes else 0.0
    top_before = {chunk.chunk_id for chunk in original[:top_k]}
    top_after = {chunk.chunk_id for chunk in reranked[:top_k]}
    overlap = len(top_before & top_after) / top_k if top_k > 0 else 0.0
    return RerankEvaluation(position_changes=changes, average_movement=average, top_overlap=overlap)


# ----------------------------------------------------------------------------


def _score_each(chunks: Sequence[Chunk], scorer: Callable[[Chunk], float]) -> list[float]:
    scores: list[float] = []
    for chunk in chunks:
        try:
            scores.append(float(scorer(chunk)))
        except (AttributeError, TypeError, ValueError, ZeroDivisionError) as exc:
            logger.warning("Scoring failed for chunk %s; keeping similarity: %s", chunk.chunk_id, exc)
            scores.append(chunk.similarity)
    return scores


def _normalize_to_max(scores: Sequence[float]) -> list[float]:
    top = max(scores, default=0.0)
    if top <= 0:
        return [0.0 for _ in scores]
    return [clamp(value / top) for value in scores]


def _safe_text(chunk: Chunk) -> str:
    return chunk.content if isinstance(chunk.content, str) else ""


__all__ = [
    "RerankStrategy",
    "RerankEvaluation",
    "Reranker",
    "rerank",
    "query_phrases",
    "keyword_phrase_score",
    "evaluate_reranking",
]
