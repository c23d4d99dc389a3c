"""BM25 scoring and result-set quality metrics."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping, Sequence

from adaptive_rag.models.entities import Chunk, StageMetrics, clamp
from adaptive_rag.utils.text import jaccard, term_frequencies, terms, tokenize

K1 = 1.2
B = 0.75

CONFIDENCE_TOP_N = 5
COMPLETENESS_SATURATION = 5


@dataclass(frozen=True, slots=True)
class CorpusStats:
    """Statistics of the current candidate pool; rebuilt for every request."""

    document_count: int
    avg_doc_length: float
    document_frequencies: Mapping[str, int]

    def idf(self, term: str) -> float:
        df = self.document_frequencies.get(term, 0)
        n = self.document_count
        return math.log((n - df + 0.5) / (df + 0.5) + 1)


def build_corpus_stats(texts: Sequence[str]) -> CorpusStats:
    frequencies: dict[str, int] = {}
    total_length = 0
    for text in texts:
        tokens = tokenize(text)
        total_length += len(tokens)
        for token in set(tokens):
            frequencies[token] = frequencies.get(token, 0) + 1
    count = len(texts)
    avg = total_length / count if count else 0.0
    return CorpusStats(document_count=count, avg_doc_length=avg, document_frequencies=frequencies)


def bm25_score(query: str, stats: CorpusStats, content: str) -> float:
    """Sum of idf * saturated term frequency over the query terms."""
    doc_tokens = tokenize(content)
    if not doc_tokens:
        return 0.0
    tf = term_frequencies(doc_tokens)
    doc_length = len(doc_tokens)
    avg_length = stats.avg_doc_length or doc_length
    score = 0.0
    for term in tokenize(query):
        freq = tf.get(term, 0)
        if freq == 0:
            continue
        norm = freq * (K1 + 1) / (freq + K1 * (1 - B + B * (doc_length / avg_length)))
        score += stats.idf(term) * norm
    return score


def bm25_scores(query: str, texts: Sequence[str]) -> list[float]:
    stats = build_corpus_stats(texts)
    return [bm25_score(query, stats, text) for text in texts]


# ----------------------------------------------------------------------------
# Result-set metrics


def confidence(chunks: Sequence[Chunk], query: str) -> float:
    """Heuristic estimate that the set answers the query; 0 for an empty set."""
    if not chunks:
        return 0.0
    ranked = sorted(chunks, key=lambda chunk: chunk.similarity, reverse=True)
    top = ranked[:CONFIDENCE_TOP_N]
    top_similarity = top[0].similarity
    avg_similarity = sum(chunk.similarity for chunk in top) / len(top)
    fifth = top[-1].similarity
    dropoff = (top_similarity - fifth) / top_similarity if top_similarity > 0 else 0.0
    coverage = query_coverage(query, top)
    score = top_similarity * 0.3 + avg_similarity * 0.3 + (1 - dropoff) * 0.2 + coverage * 0.2
    return clamp(score)


def query_coverage(query: str, chunks: Sequence[Chunk]) -> float:
    query_terms = set(terms(query, longer_than=3))
    if not query_terms:
        return 1.0
    combined = " ".join(chunk.content.lower() for chunk in chunks)
    covered = sum(1 for term in query_terms if term in combined)
    return covered / len(query_terms)


def diversity(chunks: Sequence[Chunk]) -> float:
    """Half unique-document ratio, half inverse of how many chunks share each term."""
    if not chunks:
        return 0.0
    if len(chunks) == 1:
        return 1.0
    count = len(chunks)
    document_ratio = len({chunk.document_id for chunk in chunks}) / count
    spread: dict[str, int] = {}
    for chunk in chunks:
        for term in set(terms(chunk.content, longer_than=4)):
            spread[term] = spread.get(term, 0) + 1
    if spread:
        avg_spread = sum(spread.values()) / len(spread)
        term_diversity = min(1.0 / avg_spread, 1.0)
    else:
        term_diversity = 1.0
    return clamp(document_ratio * 0.5 + term_diversity * 0.5)


def coherence(chunks: Sequence[Chunk]) -> float:
    """Mean Jaccard overlap of consecutive chunks."""
    if not chunks:
        return 0.0
    if len(chunks) == 1:
        return 1.0
    overlaps: list[float] = []
    for previous, current in zip(chunks, chunks[1:]):
        a = set(terms(previous.content, longer_than=4))
        b = set(terms(current.content, longer_than=4))
        if a or b:
            overlaps.append(jaccard(a, b))
    if not overlaps:
        return 0.0
    return clamp(sum(overlaps) / len(overlaps))


def completeness(chunks: Sequence[Chunk], query: str) -> float:
    """How fully a final set covers the query's sources and terms.

    0.3 document coverage (five documents saturate), 0.3 chunks per document
    (five saturate) and 0.4 query term coverage.
    """
    if not chunks:
        return 0.0
    documents = {chunk.document_id for chunk in chunks}
    document_coverage = min(len(documents) / COMPLETENESS_SATURATION, 1.0)
    chunk_density = min(len(chunks) / len(documents) / COMPLETENESS_SATURATION, 1.0)
    return clamp(document_coverage * 0.3 + chunk_density * 0.3 + query_coverage(query, chunks) * 0.4)


def stage_metrics(chunks: Sequence[Chunk], query: str) -> tuple[float, StageMetrics]:
    """Return ``(confidence, metrics)`` for a candidate set."""
    if not chunks:
        return 0.0, StageMetrics()
    similarities = [chunk.similarity for chunk in chunks]
    score = confidence(chunks, query)
    metrics = StageMetrics(
        avg_similarity=clamp(sum(similarities) / len(similarities)),
        top_similarity=clamp(max(similarities)),
        coverage=score,
        diversity=diversity(chunks),
        coherence=coherence(chunks),
    )
    return score, metrics


__all__ = [
    "K1",
    "B",
    "CorpusStats",
    "build_corpus_stats",
    "bm25_score",
    "bm25_scores",
    "confidence",
    "query_coverage",
    "diversity",
    "coherence",
    "completeness",
    "stage_metrics",
]
