"""In-memory chunk store implementing the search and fetch interfaces."""

from __future__ import annotations

import threading
from typing import Sequence

from rapidfuzz import fuzz

from adaptive_rag.core.metrics import INDEX_SIZE
from adaptive_rag.models.entities import Chunk, clamp


class InMemoryChunkStore:
    """Cosine vector search, fuzzy keyword search and positional fetches over held chunks."""

    def __init__(self, dim: int) -> None:
        self.dim = dim
        self._chunks: dict[str, Chunk] = {}
        self._vectors: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return len(self._chunks)

    def upsert(self, chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]]) -> None:
        if len(chunks) != len(vectors):
            raise ValueError("chunks and vectors must have the same length")
        for vector in vectors:
            if len(vector) != self.dim:
                raise ValueError("Vector dimension mismatch")
        with self._lock:
            for chunk, vector in zip(chunks, vectors):
                self._chunks[chunk.chunk_id] = chunk
                self._vectors[chunk.chunk_id] = list(vector)
        INDEX_SIZE.set(self.size)

    async def vector_search(
        self,
        embedding: Sequence[float],
        match_count: int,
        similarity_threshold: float,
    ) -> list[Chunk]:
        if len(embedding) != self.dim:
            raise ValueError("Query vector dimension mismatch")
        with self._lock:
            scored = [
                (chunk_id, clamp(_dot(vector, embedding)))
                for chunk_id, vector in self._vectors.items()
            ]
            chunks = dict(self._chunks)
        scored = [item for item in scored if item[1] >= similarity_threshold]
        scored.sort(key=lambda item: item[1], reverse=True)
        return [chunks[chunk_id].with_similarity(score) for chunk_id, score in scored[:match_count]]

    async def keyword_search(self, keywords: Sequence[str], match_limit: int) -> list[Chunk]:
        lowered = [keyword.lower() for keyword in keywords if keyword]
        if not lowered:
            return []
        phrase = " ".join(lowered)
        with self._lock:
            chunks = list(self._chunks.values())
        scored: list[tuple[Chunk, float]] = []
        for chunk in chunks:
            content = chunk.content.lower()
            if not any(keyword in content for keyword in lowered):
                continue
            scored.append((chunk, fuzz.token_set_ratio(phrase, content) / 100.0))
        scored.sort(key=lambda item: item[1], reverse=True)
        return [chunk.with_similarity(score) for chunk, score in scored[:match_limit]]

    async def fetch_by_ids(self, ids: Sequence[str]) -> list[Chunk]:
        with self._lock:
            return [self._chunks[chunk_id] for chunk_id in ids if chunk_id in self._chunks]

    async def fetch_by_document_and_indices(self, document_id: str, indices: Sequence[int]) -> list[Chunk]:
        wanted = set(indices)
        with self._lock:
            found = [
                chunk
                for chunk in self._chunks.values()
                if chunk.document_id == document_id and chunk.chunk_index in wanted
            ]
        return sorted(found, key=lambda chunk: chunk.chunk_index or 0)


def _dot(a: Sequence[float], b: Sequence[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


__all__ = ["InMemoryChunkStore"]
