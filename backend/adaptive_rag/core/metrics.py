"""Prometheus metrics instrumentation."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REGISTRY = CollectorRegistry()

RETRIEVAL_COUNT = Counter(
    "arag_retrievals_total",
    "Completed adaptive retrievals",
    labelnames=("outcome",),
    registry=REGISTRY,
)

STAGE_LATENCY = Histogram(
    "arag_stage_latency_seconds",
    "Latency of retrieval stages",
    labelnames=("stage",),
    registry=REGISTRY,
)

BACKEND_FAILURES = Counter(
    "arag_backend_failures_total",
    "External calls that failed or timed out",
    labelnames=("backend",),
    registry=REGISTRY,
)

COMPUTATION_FALLBACKS = Counter(
    "arag_computation_fallbacks_total",
    "Rerank or MMR computations that fell back to similarity order",
    labelnames=("component",),
    registry=REGISTRY,
)

CACHE_EVENTS = Counter(
    "arag_cache_events_total",
    "Result cache lookups",
    labelnames=("event",),
    registry=REGISTRY,
)

CHUNKS_PRODUCED = Counter(
    "arag_chunks_produced_total",
    "Chunks emitted by the semantic chunker",
    registry=REGISTRY,
)

INGEST_DURATION = Histogram(
    "arag_ingest_duration_seconds",
    "Ingest pipeline duration",
    labelnames=("source",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "arag_index_chunks",
    "Number of chunks held by the in-memory store",
    registry=REGISTRY,
)


def metrics_payload() -> tuple[bytes, str]:
    """Return the Prometheus exposition payload and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


__all__ = [
    "REGISTRY",
    "RETRIEVAL_COUNT",
    "STAGE_LATENCY",
    "BACKEND_FAILURES",
    "COMPUTATION_FALLBACKS",
    "CACHE_EVENTS",
    "CHUNKS_PRODUCED",
    "INGEST_DURATION",
    "INDEX_SIZE",
    "metrics_payload",
]
