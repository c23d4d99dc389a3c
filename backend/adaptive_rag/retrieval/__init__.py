"""Retrieval orchestration components."""

from .adaptive import AdaptiveRetriever
from .cache import ResultCache
from .classifier import classify_query
from .rerank import Reranker, RerankStrategy, rerank
from .vector_index import InMemoryChunkStore

__all__ = [
    "AdaptiveRetriever",
    "ResultCache",
    "classify_query",
    "Reranker",
    "RerankStrategy",
    "rerank",
    "InMemoryChunkStore",
]
