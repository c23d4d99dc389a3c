"""Pydantic DTOs exchanged with the command-line interface."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from adaptive_rag.models.entities import Chunk, RetrievalResult, RetrievalStage
from adaptive_rag.retrieval.adjacency import DocumentGroup, aggregate_chunks


class CandidateRecord(BaseModel):
    chunk_id: str = Field(alias="id")
    document_id: str = "unknown"
    content: str
    similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    chunk_index: int | None = Field(default=None, ge=0)

    model_config = {"populate_by_name": True}

    def to_chunk(self) -> Chunk:
        return Chunk(
            chunk_id=self.chunk_id,
            document_id=self.document_id,
            content=self.content,
            similarity=self.similarity,
            chunk_index=self.chunk_index,
        )


class ChunkResult(BaseModel):
    chunk_id: str
    document_id: str
    score: float
    similarity: float
    rerank_score: float | None = None
    chunk_index: int | None = None
    text: str
    attributes: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "ChunkResult":
        return cls(
            chunk_id=chunk.chunk_id,
            document_id=chunk.document_id,
            score=chunk.relevance,
            similarity=chunk.similarity,
            rerank_score=chunk.rerank_score,
            chunk_index=chunk.chunk_index,
            text=chunk.content,
            attributes=dict(chunk.attributes),
        )


class StageSummary(BaseModel):
    stage_index: int
    strategy: str
    confidence: float
    chunk_count: int
    duration_ms: float
    metrics: dict[str, float]

    @classmethod
    def from_stage(cls, stage: RetrievalStage) -> "StageSummary":
        metrics = stage.metrics
        return cls(
            stage_index=stage.stage_index,
            strategy=stage.strategy,
            confidence=stage.confidence,
            chunk_count=len(stage.chunks),
            duration_ms=stage.duration_ms,
            metrics={
                "avg_similarity": metrics.avg_similarity,
                "top_similarity": metrics.top_similarity,
                "coverage": metrics.coverage,
                "diversity": metrics.diversity,
                "coherence": metrics.coherence,
            },
        )


class DocumentSummary(BaseModel):
    document_id: str
    max_similarity: float
    chunk_ids: list[str]

    @classmethod
    def from_group(cls, group: DocumentGroup) -> "DocumentSummary":
        return cls(
            document_id=group.document_id,
            max_similarity=group.max_similarity,
            chunk_ids=[chunk.chunk_id for chunk in group.chunks],
        )


class RetrievalResponse(BaseModel):
    strategy: str
    reasoning: str
    total_confidence: float
    completeness: float
    degraded: bool
    cached: bool
    stages: list[StageSummary]
    results: list[ChunkResult]
    documents: list[DocumentSummary]

    @classmethod
    def from_result(cls, result: RetrievalResult) -> "RetrievalResponse":
        return cls(
            strategy=result.strategy,
            reasoning=result.reasoning,
            total_confidence=result.total_confidence,
            completeness=result.completeness,
            degraded=result.degraded,
            cached=result.cached,
            stages=[StageSummary.from_stage(stage) for stage in result.stages],
            results=[ChunkResult.from_chunk(chunk) for chunk in result.chunks],
            documents=[DocumentSummary.from_group(group) for group in aggregate_chunks(result.chunks)],
        )


__all__ = ["CandidateRecord", "ChunkResult", "StageSummary", "DocumentSummary", "RetrievalResponse"]
