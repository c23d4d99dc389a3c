"""Interfaces of the external services the retriever depends on."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from adaptive_rag.models.entities import Chunk


@runtime_checkable
class VectorSearch(Protocol):
    async def vector_search(
        self,
        embedding: Sequence[float],
        match_count: int,
        similarity_threshold: float,
    ) -> list[Chunk]: ...


@runtime_checkable
class KeywordSearch(Protocol):
    async def keyword_search(self, keywords: Sequence[str], match_limit: int) -> list[Chunk]: ...


@runtime_checkable
class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


@runtime_checkable
class ChunkFetcher(Protocol):
    async def fetch_by_ids(self, ids: Sequence[str]) -> list[Chunk]: ...

    async def fetch_by_document_and_indices(self, document_id: str, indices: Sequence[int]) -> list[Chunk]: ...


__all__ = ["VectorSearch", "KeywordSearch", "Embedder", "ChunkFetcher"]
