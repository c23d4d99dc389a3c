"""Query characterization and temporal/financial ranking signals."""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Sequence

from adaptive_rag.core.errors import InputError
from adaptive_rag.ingest.metadata import extract_metadata
from adaptive_rag.models.entities import (
    Chunk,
    ChunkMetadata,
    Complexity,
    Precision,
    QueryContext,
    QueryIntent,
    QueryType,
    SearchStrategy,
    SemanticType,
    Specificity,
)
from adaptive_rag.utils.text import has_words, normalize

_TEMPORAL_PATTERNS = (
    re.compile(r"\b(?:Q[1-4]|quarter|quarterly)\b", re.I),
    re.compile(r"\b(?:19|20)\d{2}\b"),
    re.compile(r"\b(?:fiscal|FY)\s*'?\d{2,4}\b", re.I),
    re.compile(r"\b(?:january|february|march|april|may|june|july|august|september|october|november|december)\b", re.I),
    re.compile(r"\b(?:last|previous|current|next|this)\s+(?:year|quarter|month)\b", re.I),
    re.compile(r"\b(?:year[- ]over[- ]year|yoy|quarter[- ]over[- ]quarter|qoq)\b", re.I),
    re.compile(r"\b(?:between|from|during|in)\s+(?:\d{4}|\w+\s+\d{4})\b", re.I),
)
_FINANCIAL_PATTERNS = (
    re.compile(r"\b(?:revenue|sales|income|profit|loss|earnings|ebitda|margin|cash\s+flow)\b", re.I),
    re.compile(r"\b(?:growth|increase|decrease|decline|change|trend)\b", re.I),
    re.compile(r"\b(?:performance|results|analysis|comparison)\b", re.I),
    re.compile(r"\$|\b(?:dollars?|usd|million|billion)\b", re.I),
    re.compile(r"\d+(?:\.\d+)?\s?%|\bpercent(?:age)?\b", re.I),
)
_SPECIFIC_DATA_PATTERNS = (
    re.compile(r"\b(?:exact|specific|precise|actual)\s+(?:number|figure|amount|value)\b", re.I),
    re.compile(r"\bhow\s+(?:much|many)\b", re.I),
    re.compile(r"\bwhat\s+(?:was|is|were)\s+the\b", re.I),
)
_METRIC_WORDS = re.compile(
    r"\b(revenue|sales|income|profit|loss|earnings|ebitda|margin|growth|cash\s+flow|expenses?|costs?)\b", re.I
)
_TIMEFRAME_PATTERNS = (
    (re.compile(r"\bQ([1-4])\s*(?:FY\s?)?((?:19|20)\d{2})\b", re.I), lambda m: f"Q{m.group(1)} {m.group(2)}"),
    (re.compile(r"\b(?:fiscal\s+year|FY)\s?'?((?:19|20)\d{2})\b", re.I), lambda m: f"FY{m.group(1)}"),
    (re.compile(r"\b((?:19|20)\d{2})\b"), lambda m: m.group(1)),
    (re.compile(r"\b(last|previous|current|next|this)\s+(year|quarter|month)\b", re.I), lambda m: m.group(0).lower()),
)

_COMPARISON_RE = re.compile(r"\b(?:compare|comparison|versus|vs\.?|between|difference|differ)\b", re.I)
_ANALYSIS_RE = re.compile(r"\b(?:analy[sz]e|analysis|why|impact|trend|explain|evaluate|assess)\b", re.I)
_QUESTION_RE = re.compile(r"^\s*(?:what|who|when|where|which|how|is|are|does|do|did|can)\b", re.I)
_BROAD_RE = re.compile(r"\b(?:all|every|overview|summary|summarize|comprehensive|everything|general)\b", re.I)
_COMPREHENSIVE_RE = re.compile(
    r"\b(?:all|every|each|across|complete|full|entire|whole|compare|list|over\s+time)\b"
    r"|\b(?:fluctuat|trend|histor|enumerat)",
    re.I,
)

_PRECISION_OFFSETS = {
    Precision.LOW: 0.0,
    Precision.MEDIUM: 0.10,
    Precision.HIGH: 0.20,
    Precision.EXACT: 0.30,
}


def classify_query(query: str, base_threshold: float = 0.45) -> QueryContext:
    """Derive a ``QueryContext`` from surface patterns of the query."""
    text = normalize(query or "")
    if not text or not has_words(text):
        raise InputError("query is empty or has no searchable terms")

    temporal_hits = sum(1 for pattern in _TEMPORAL_PATTERNS if pattern.search(text))
    financial_hits = sum(1 for pattern in _FINANCIAL_PATTERNS if pattern.search(text))
    specific_hits = sum(1 for pattern in _SPECIFIC_DATA_PATTERNS if pattern.search(text))
    metrics = tuple(dict.fromkeys(_normalize_metric(m.group(1)) for m in _METRIC_WORDS.finditer(text)))

    is_temporal = temporal_hits > 0
    is_financial = financial_hits > 0
    is_specific_data = specific_hits > 0 or (is_financial and len(metrics) > 1)

    word_count = len(text.split())
    complexity = _complexity(word_count, text)
    query_type = _query_type(text)
    specificity = _specificity(word_count, text)
    precision = _precision(is_temporal, is_financial, specific_hits)
    strategy = _search_strategy(precision, is_temporal, is_financial, query_type, specificity)

    threshold = base_threshold + _PRECISION_OFFSETS[precision]
    if specificity is Specificity.SPECIFIC:
        threshold += 0.05
    threshold = round(min(threshold, 0.95), 2)

    context = QueryContext(
        query=text,
        is_temporal=is_temporal,
        is_financial=is_financial,
        is_specific_data=is_specific_data,
        complexity=complexity,
        query_type=query_type,
        specificity=specificity,
        intent=_intent(query_type, is_temporal, is_financial, is_specific_data),
        search_strategy=strategy,
        required_precision=precision,
        suggested_threshold=threshold,
        timeframe=extract_timeframe(text),
        financial_metrics=metrics,
        is_comprehensive=requires_comprehensive(text),
    )
    return _with_reasoning(context)


def requires_comprehensive(query: str) -> bool:
    """True when the query asks for an exhaustive answer such as a list or a trend."""
    return bool(_COMPREHENSIVE_RE.search(query))


def extract_timeframe(query: str) -> str | None:
    for pattern, render in _TIMEFRAME_PATTERNS:
        match = pattern.search(query)
        if match:
            return render(match)
    return None


def _normalize_metric(raw: str) -> str:
    return re.sub(r"\s+", " ", raw.lower())


def _complexity(word_count: int, text: str) -> Complexity:
    if word_count > 15 or (_COMPARISON_RE.search(text) and _ANALYSIS_RE.search(text)):
        return Complexity.COMPLEX
    if word_count > 7 or _COMPARISON_RE.search(text) or _ANALYSIS_RE.search(text):
        return Complexity.MODERATE
    return Complexity.SIMPLE


def _query_type(text: str) -> QueryType:
    if _COMPARISON_RE.search(text):
        return QueryType.COMPARATIVE
    if _ANALYSIS_RE.search(text):
        return QueryType.ANALYTICAL
    if _QUESTION_RE.search(text) or len(text.split()) <= 6:
        return QueryType.FACTUAL
    return QueryType.EXPLORATORY


def _specificity(word_count: int, text: str) -> Specificity:
    if _BROAD_RE.search(text) or word_count > 20:
        return Specificity.BROAD
    if word_count < 5:
        return Specificity.SPECIFIC
    return Specificity.GENERAL


def _precision(is_temporal: bool, is_financial: bool, specific_hits: int) -> Precision:
    if specific_hits > 0 and (is_temporal or is_financial):
        return Precision.EXACT
    if is_temporal and is_financial:
        return Precision.HIGH
    if is_temporal or is_financial:
        return Precision.MEDIUM
    return Precision.LOW


def _search_strategy(
    precision: Precision,
    is_temporal: bool,
    is_financial: bool,
    query_type: QueryType,
    specificity: Specificity,
) -> SearchStrategy:
    if precision is Precision.EXACT:
        return SearchStrategy.EXACT_MATCH
    if is_temporal and is_financial:
        return SearchStrategy.MULTI_STAGE
    if is_temporal:
        return SearchStrategy.TEMPORAL_BOOST
    if query_type is QueryType.FACTUAL and specificity is Specificity.SPECIFIC:
        return SearchStrategy.HYBRID
    return SearchStrategy.SEMANTIC


def _intent(query_type: QueryType, is_temporal: bool, is_financial: bool, is_specific_data: bool) -> QueryIntent:
    if query_type is QueryType.COMPARATIVE:
        return QueryIntent.COMPARISON
    if is_specific_data:
        return QueryIntent.DATA_LOOKUP
    if is_temporal and is_financial:
        return QueryIntent.TREND_ANALYSIS
    if query_type is QueryType.ANALYTICAL:
        return QueryIntent.EXPLANATION
    return QueryIntent.GENERAL


def _with_reasoning(context: QueryContext) -> QueryContext:
    parts = [
        f"{context.complexity.value} {context.query_type.value} query ({context.specificity.value})",
    ]
    signals = []
    if context.is_temporal:
        signals.append(f"temporal{f' [{context.timeframe}]' if context.timeframe else ''}")
    if context.is_financial:
        metrics = ", ".join(context.financial_metrics)
        signals.append(f"financial{f' [{metrics}]' if metrics else ''}")
    if context.is_comprehensive:
        signals.append("comprehensive")
    if signals:
        parts.append("signals: " + " + ".join(signals))
    parts.append(
        f"precision {context.required_precision.value} -> {context.search_strategy.value} "
        f"at threshold {context.suggested_threshold:.2f}"
    )
    return replace(context, reasoning="; ".join(parts))


# ----------------------------------------------------------------------------
# Ranking signals


def validate_temporal_match(metadata: ChunkMetadata, context: QueryContext) -> float:
    """1.0 exact timeframe, 0.7 same year, 0.3 chunk without dates, 0.0 mismatch."""
    if not context.is_temporal or not context.timeframe:
        return 1.0
    if not metadata.temporal_entities:
        return 0.3
    wanted = context.timeframe.lower()
    normalized = [entity.normalized.lower() for entity in metadata.temporal_entities]
    if wanted in normalized:
        return 1.0
    year = re.search(r"(?:19|20)\d{2}", wanted)
    if year is None:
        return 0.3
    if any(year.group(0) in value for value in normalized):
        return 0.7
    return 0.0


def apply_entity_boosts(chunks: Sequence[Chunk], context: QueryContext) -> list[Chunk]:
    """Boost similarity for chunks whose temporal/financial entities match the query."""
    if not (context.is_temporal or context.is_financial):
        return list(chunks)
    wanted_metrics = set(context.financial_metrics)
    boosted: list[Chunk] = []
    for chunk in chunks:
        metadata = chunk.metadata or extract_metadata(chunk.content)
        bonus = 0.0
        if context.is_temporal:
            match = validate_temporal_match(metadata, context)
            if match > 0.8:
                bonus += 0.2
            elif match > 0.5:
                bonus += 0.1
        if context.is_financial and metadata.has_financial_data:
            bonus += 0.15
        elif context.is_financial and metadata.semantic_type is SemanticType.FINANCIAL_DATA:
            bonus += 0.05
        if context.is_financial:
            labels = {entity.label for entity in metadata.financial_entities if entity.label}
            bonus += 0.05 * len(wanted_metrics & labels)
        boosted.append(chunk.with_similarity(chunk.similarity + bonus) if bonus else chunk)
    return boosted


__all__ = [
    "classify_query",
    "extract_timeframe",
    "requires_comprehensive",
    "validate_temporal_match",
    "apply_entity_boosts",
]
