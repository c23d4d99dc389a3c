"""Test fixtures for the adaptive retrieval engine."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from adaptive_rag.models.entities import Chunk  # noqa: E402


@pytest.fixture(autouse=True)
def reset_state(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset cached settings and environment between tests."""
    monkeypatch.delenv("ARAG_CONFIG", raising=False)

    from adaptive_rag.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_chunk(
    chunk_id: str,
    content: str,
    similarity: float = 0.5,
    document_id: str = "doc",
    chunk_index: int | None = None,
) -> Chunk:
    return Chunk(
        chunk_id=chunk_id,
        document_id=document_id,
        content=content,
        similarity=similarity,
        chunk_index=chunk_index,
    )


class FakeEmbedder:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding service down")
        return [1.0, 0.0, 0.0]


class FakeVectorSearch:
    """Returns a fixed result list, recording the threshold of every call."""

    def __init__(
        self,
        results: Sequence[Chunk] = (),
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.results = list(results)
        self.error = error
        self.delay = delay
        self.thresholds: list[float] = []
        self.match_counts: list[int] = []

    async def vector_search(
        self,
        embedding: Sequence[float],
        match_count: int,
        similarity_threshold: float,
    ) -> list[Chunk]:
        self.thresholds.append(similarity_threshold)
        self.match_counts.append(match_count)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [chunk for chunk in self.results if chunk.similarity >= similarity_threshold][:match_count]


class FakeKeywordSearch:
    def __init__(self, results: Sequence[Chunk] = ()) -> None:
        self.results = list(results)
        self.calls: list[list[str]] = []

    async def keyword_search(self, keywords: Sequence[str], match_limit: int) -> list[Chunk]:
        self.calls.append(list(keywords))
        return self.results[:match_limit]


class FakeChunkFetcher:
    """In-memory neighbour lookups; ``delay`` slows every per-document fetch."""

    def __init__(self, chunks: Sequence[Chunk], delay: float = 0.0) -> None:
        self.chunks = list(chunks)
        self.delay = delay
        self.document_calls: list[tuple[str, list[int]]] = []

    async def fetch_by_ids(self, ids: Sequence[str]) -> list[Chunk]:
        return [chunk for chunk in self.chunks if chunk.chunk_id in ids]

    async def fetch_by_document_and_indices(self, document_id: str, indices: Sequence[int]) -> list[Chunk]:
        self.document_calls.append((document_id, list(indices)))
        if self.delay:
            await asyncio.sleep(self.delay)
        return [
            chunk
            for chunk in self.chunks
            if chunk.document_id == document_id and chunk.chunk_index in indices
        ]


@pytest.fixture(scope="session")
def sample_text() -> str:
    return "Title\n\nParagraph one.\n\nParagraph two is here."
