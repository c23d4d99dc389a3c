"""Dataclasses and enumerations shared across ingestion and retrieval."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping


class TemporalType(str, Enum):
    QUARTER = "quarter"
    YEAR = "year"
    FISCAL_YEAR = "fiscal_year"
    MONTH = "month"
    DATE_RANGE = "date_range"
    SPECIFIC_DATE = "specific_date"


class FinancialType(str, Enum):
    CURRENCY_AMOUNT = "currency_amount"
    PERCENTAGE = "percentage"
    METRIC = "metric"


class SectionType(str, Enum):
    FINANCIAL_STATEMENT = "financial_statement"
    TABLE = "table"
    HEADER = "header"
    PARAGRAPH = "paragraph"


class SemanticType(str, Enum):
    FINANCIAL_DATA = "financial_data"
    TEMPORAL_CONTEXT = "temporal_context"
    MIXED = "mixed"
    GENERAL = "general"


class ContentType(str, Enum):
    HEADER = "header"
    PARAGRAPH = "paragraph"
    LIST = "list"
    TABLE = "table"
    CODE = "code"
    MIXED = "mixed"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class QueryType(str, Enum):
    FACTUAL = "factual"
    ANALYTICAL = "analytical"
    COMPARATIVE = "comparative"
    EXPLORATORY = "exploratory"


class Specificity(str, Enum):
    SPECIFIC = "specific"
    GENERAL = "general"
    BROAD = "broad"


class QueryIntent(str, Enum):
    DATA_LOOKUP = "data_lookup"
    TREND_ANALYSIS = "trend_analysis"
    COMPARISON = "comparison"
    EXPLANATION = "explanation"
    GENERAL = "general"


class Precision(str, Enum):
    EXACT = "exact"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SearchStrategy(str, Enum):
    SEMANTIC = "semantic"
    HYBRID = "hybrid"
    EXACT_MATCH = "exact_match"
    MULTI_STAGE = "multi_stage"
    TEMPORAL_BOOST = "temporal_boost"


@dataclass(frozen=True, slots=True)
class TemporalEntity:
    type: TemporalType
    value: str
    normalized: str
    confidence: float
    position: int


@dataclass(frozen=True, slots=True)
class FinancialEntity:
    type: FinancialType
    value: str
    normalized: float | None
    unit: str | None
    confidence: float
    position: int
    label: str | None = None


@dataclass(frozen=True, slots=True)
class SectionInfo:
    type: SectionType
    title: str | None
    confidence: float


@dataclass(frozen=True, slots=True)
class ChunkMetadata:
    temporal_entities: tuple[TemporalEntity, ...] = ()
    financial_entities: tuple[FinancialEntity, ...] = ()
    section: SectionInfo = SectionInfo(type=SectionType.PARAGRAPH, title=None, confidence=0.5)
    key_terms: tuple[str, ...] = ()
    numerical_density: float = 0.0
    temporal_density: float = 0.0
    semantic_type: SemanticType = SemanticType.GENERAL
    urls: tuple[str, ...] = ()

    @property
    def has_temporal_data(self) -> bool:
        return bool(self.temporal_entities)

    @property
    def has_financial_data(self) -> bool:
        return bool(self.financial_entities)


@dataclass(frozen=True, slots=True)
class Chunk:
    """A bounded span of document text; rescoring produces new instances."""

    chunk_id: str
    document_id: str
    content: str
    similarity: float = 0.0
    chunk_index: int | None = None
    metadata: ChunkMetadata | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)
    rerank_score: float | None = None

    @property
    def relevance(self) -> float:
        return self.rerank_score if self.rerank_score is not None else self.similarity

    def with_similarity(self, similarity: float) -> "Chunk":
        return replace(self, similarity=clamp(similarity))

    def with_rerank_score(self, score: float) -> "Chunk":
        return replace(self, rerank_score=clamp(score))

    def with_attributes(self, **values: Any) -> "Chunk":
        return replace(self, attributes={**self.attributes, **values})


@dataclass(frozen=True, slots=True)
class QueryContext:
    query: str
    is_temporal: bool
    is_financial: bool
    is_specific_data: bool
    complexity: Complexity
    query_type: QueryType
    specificity: Specificity
    intent: QueryIntent
    search_strategy: SearchStrategy
    required_precision: Precision
    suggested_threshold: float
    timeframe: str | None = None
    financial_metrics: tuple[str, ...] = ()
    is_comprehensive: bool = False
    reasoning: str = ""


@dataclass(frozen=True, slots=True)
class StageMetrics:
    avg_similarity: float = 0.0
    top_similarity: float = 0.0
    coverage: float = 0.0
    diversity: float = 0.0
    coherence: float = 0.0


@dataclass(frozen=True, slots=True)
class RetrievalStage:
    stage_index: int
    strategy: str
    chunks: tuple[Chunk, ...]
    confidence: float
    metrics: StageMetrics
    duration_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class RetrievalResult:
    chunks: tuple[Chunk, ...]
    stages: tuple[RetrievalStage, ...]
    total_confidence: float
    strategy: str
    reasoning: str
    query_context: QueryContext | None = None
    degraded: bool = False
    cached: bool = False
    completeness: float = 0.0


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Clamp ``value`` into ``[lower, upper]``; NaN collapses to ``lower``."""
    if value != value:
        return lower
    return max(lower, min(upper, float(value)))


__all__ = [
    "TemporalType",
    "FinancialType",
    "SectionType",
    "SemanticType",
    "ContentType",
    "Complexity",
    "QueryType",
    "Specificity",
    "QueryIntent",
    "Precision",
    "SearchStrategy",
    "TemporalEntity",
    "FinancialEntity",
    "SectionInfo",
    "ChunkMetadata",
    "Chunk",
    "QueryContext",
    "StageMetrics",
    "RetrievalStage",
    "RetrievalResult",
    "clamp",
]
