"""Tests for embeddings, the in-memory store and the ingest pipeline."""

import asyncio
from pathlib import Path

import pytest

from adaptive_rag.core.config import ChunkingConfig
from adaptive_rag.ingest.embeddings import HashingEmbedder
from adaptive_rag.ingest.pipeline import IngestPipeline
from adaptive_rag.retrieval.adaptive import AdaptiveRetriever
from adaptive_rag.retrieval.backends import ChunkFetcher, Embedder, KeywordSearch, VectorSearch
from adaptive_rag.retrieval.vector_index import InMemoryChunkStore
from conftest import make_chunk

ONBOARDING = "New staff receive laptops on day one. The onboarding buddy explains team rituals."
FINANCE = "Revenue reached $4.2B in Q3 2023, up 15% year over year, driven by cloud sales."


def test_hashing_embedder_is_normalized_and_deterministic() -> None:
    embedder = HashingEmbedder(dim=64)
    batch = embedder.encode(["hello world", "hello world", ""])
    assert batch.dim == 64
    assert batch.vectors[0] == batch.vectors[1]
    assert abs(sum(value * value for value in batch.vectors[0]) - 1.0) < 1e-6
    assert all(value == 0.0 for value in batch.vectors[2])
    assert asyncio.run(embedder.embed("hello world")) == batch.vectors[0]


def test_store_satisfies_backend_protocols() -> None:
    store = InMemoryChunkStore(dim=8)
    assert isinstance(store, VectorSearch)
    assert isinstance(store, KeywordSearch)
    assert isinstance(store, ChunkFetcher)
    assert isinstance(HashingEmbedder(8), Embedder)


def test_store_rejects_dimension_mismatch() -> None:
    store = InMemoryChunkStore(dim=3)
    with pytest.raises(ValueError):
        store.upsert([make_chunk("a", "text")], [[1.0, 0.0]])
    with pytest.raises(ValueError):
        asyncio.run(store.vector_search([1.0], 5, 0.0))


def test_vector_search_orders_by_cosine() -> None:
    store = InMemoryChunkStore(dim=3)
    store.upsert(
        [make_chunk("a", "alpha"), make_chunk("b", "beta"), make_chunk("c", "gamma")],
        [[1.0, 0.0, 0.0], [0.6, 0.8, 0.0], [0.0, 0.0, 1.0]],
    )
    results = asyncio.run(store.vector_search([1.0, 0.0, 0.0], match_count=5, similarity_threshold=0.5))
    assert [chunk.chunk_id for chunk in results] == ["a", "b"]
    assert results[1].similarity == pytest.approx(0.6)
    assert store.size == 3


def test_keyword_search_requires_a_hit() -> None:
    store = InMemoryChunkStore(dim=3)
    store.upsert(
        [make_chunk("a", "quarterly revenue growth"), make_chunk("b", "team offsite agenda")],
        [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]],
    )
    results = asyncio.run(store.keyword_search(["revenue", "growth"], match_limit=5))
    assert [chunk.chunk_id for chunk in results] == ["a"]
    assert 0.0 < results[0].similarity <= 1.0
    assert asyncio.run(store.keyword_search([], match_limit=5)) == []


def test_fetch_by_document_and_indices() -> None:
    store = InMemoryChunkStore(dim=2)
    chunks = [make_chunk(f"d-{i}", f"part {i}", document_id="d", chunk_index=i) for i in range(4)]
    store.upsert(chunks, [[1.0, 0.0]] * 4)
    found = asyncio.run(store.fetch_by_document_and_indices("d", [3, 1]))
    assert [chunk.chunk_id for chunk in found] == ["d-1", "d-3"]
    assert [chunk.chunk_id for chunk in asyncio.run(store.fetch_by_ids(["d-2", "missing"]))] == ["d-2"]


def test_pipeline_skips_duplicate_text() -> None:
    pipeline = IngestPipeline(InMemoryChunkStore(dim=64))
    first = pipeline.ingest_text(ONBOARDING, document_id="onboarding")
    second = pipeline.ingest_text(ONBOARDING, document_id="again")
    assert first.status == "processed"
    assert second.status == "skipped"
    assert second.document_id == "onboarding"
    assert pipeline.store.size == len(first.chunks)


def test_pipeline_ingests_folders(tmp_path: Path) -> None:
    (tmp_path / "onboarding.md").write_text(ONBOARDING, encoding="utf-8")
    (tmp_path / "finance.txt").write_text(FINANCE, encoding="utf-8")
    (tmp_path / "copy.md").write_text(ONBOARDING, encoding="utf-8")
    (tmp_path / "empty.md").write_text("   ", encoding="utf-8")
    (tmp_path / "broken.txt").write_bytes(b"\xff\xfe\xfa")
    (tmp_path / "image.png").write_bytes(b"\x89PNG")

    outcome = IngestPipeline(InMemoryChunkStore(dim=64)).ingest_paths([tmp_path])
    assert outcome["stats"] == {"processed": 2, "skipped": 2, "failed": 1, "chunks": 2}
    assert len(outcome["results"]) == 5


def test_end_to_end_retrieval_over_store() -> None:
    store = InMemoryChunkStore(dim=256)
    embedder = HashingEmbedder(dim=256)
    pipeline = IngestPipeline(store, embedder, ChunkingConfig())
    pipeline.ingest_text(ONBOARDING, document_id="onboarding")
    pipeline.ingest_text(FINANCE, document_id="finance")

    retriever = AdaptiveRetriever(store, embedder, keyword_search=store, chunk_fetcher=store)
    result = asyncio.run(retriever.retrieve("Q3 2023 revenue growth"))
    assert result.chunks
    assert result.chunks[0].document_id == "finance"
