"""Tests for the adaptive retrieval orchestrator."""

import asyncio

import pytest

from adaptive_rag.core.config import RetrievalConfig
from adaptive_rag.core.errors import InputError
from adaptive_rag.retrieval.adaptive import AdaptiveRetriever, expand_query, extract_keywords
from adaptive_rag.retrieval.adjacency import aggregate_chunks
from adaptive_rag.retrieval.cache import ResultCache
from conftest import FakeChunkFetcher, FakeEmbedder, FakeKeywordSearch, FakeVectorSearch, make_chunk

PLAIN_QUERY = "tell me about the onboarding process for new staff"


def _run(retriever: AdaptiveRetriever, query: str = PLAIN_QUERY, **kwargs):
    return asyncio.run(retriever.retrieve(query, **kwargs))


def _weak_results() -> list:
    return [
        make_chunk("a", "badge pickup happens at reception", 0.5, "d1"),
        make_chunk("b", "laptops ship before the first day", 0.5, "d2"),
        make_chunk("c", "parking permits are issued monthly", 0.5, "d3"),
    ]


def _strong_results() -> list:
    content = "We tell every hire about the onboarding process for new staff."
    return [make_chunk(f"s{i}", content, 1.0, f"d{i}") for i in range(3)]


def test_empty_backend_falls_back_once() -> None:
    vector = FakeVectorSearch()
    result = _run(AdaptiveRetriever(vector, FakeEmbedder()))
    assert vector.thresholds == [pytest.approx(0.45), pytest.approx(0.40)]
    assert "fallback" in result.strategy
    assert result.chunks == ()
    assert result.total_confidence == 0.0
    assert result.degraded


def test_fallback_results_are_used() -> None:
    class LowOnly(FakeVectorSearch):
        async def vector_search(self, embedding, match_count, similarity_threshold):
            self.thresholds.append(similarity_threshold)
            return [make_chunk("low", "onboarding notes", 0.42)] if similarity_threshold < 0.45 else []

    result = _run(AdaptiveRetriever(LowOnly(), FakeEmbedder(), config=RetrievalConfig(max_stages=1)))
    assert result.stages[0].strategy == "fallback-semantic"
    assert [chunk.chunk_id for chunk in result.chunks] == ["low"]


def test_confident_first_stage_stops_early() -> None:
    vector = FakeVectorSearch(_strong_results())
    result = _run(AdaptiveRetriever(vector, FakeEmbedder()))
    assert len(result.stages) == 1
    assert result.strategy == "semantic→mmr"
    assert result.total_confidence >= 0.85
    assert not result.degraded
    assert vector.thresholds == [pytest.approx(0.45)]


def test_weak_results_run_all_stages_and_degrade() -> None:
    result = _run(AdaptiveRetriever(FakeVectorSearch(_weak_results()), FakeEmbedder()))
    assert len(result.stages) == 3
    assert result.stages[-1].strategy == "hybrid-mmr"
    assert result.degraded
    assert 0.0 <= result.total_confidence <= 1.0
    assert len(result.chunks) <= 10
    assert len({chunk.chunk_id for chunk in result.chunks}) == len(result.chunks)


@pytest.mark.parametrize("max_stages", [1, 2, 3])
def test_stage_budget_is_respected(max_stages: int) -> None:
    config = RetrievalConfig(max_stages=max_stages)
    result = _run(AdaptiveRetriever(FakeVectorSearch(_weak_results()), FakeEmbedder(), config=config))
    assert len(result.stages) == max_stages


def test_backend_failure_returns_empty_result() -> None:
    vector = FakeVectorSearch(error=RuntimeError("connection refused"))
    result = _run(AdaptiveRetriever(vector, FakeEmbedder()))
    assert result.chunks == ()
    assert result.degraded
    assert "fallback" in result.strategy


def test_slow_backend_times_out() -> None:
    config = RetrievalConfig(backend_timeout_seconds=0.05)
    vector = FakeVectorSearch(_weak_results(), delay=1.0)
    result = _run(AdaptiveRetriever(vector, FakeEmbedder(), config=config))
    assert result.chunks == ()
    assert result.degraded


def test_expired_deadline_skips_backends() -> None:
    vector = FakeVectorSearch(_weak_results())

    async def scenario():
        deadline = asyncio.get_running_loop().time() - 1
        return await AdaptiveRetriever(vector, FakeEmbedder()).retrieve(PLAIN_QUERY, deadline=deadline)

    result = asyncio.run(scenario())
    assert vector.thresholds == []
    assert result.chunks == ()


def test_embedding_failure_degrades_gracefully() -> None:
    vector = FakeVectorSearch(_weak_results())
    result = _run(AdaptiveRetriever(vector, FakeEmbedder(fail=True)))
    assert vector.thresholds == []
    assert result.degraded


def test_empty_query_raises() -> None:
    with pytest.raises(InputError):
        _run(AdaptiveRetriever(FakeVectorSearch(), FakeEmbedder()), query="   ")


def test_hybrid_strategy_uses_keyword_backend() -> None:
    keyword = FakeKeywordSearch([make_chunk("k1", "Revenue in Q3 2023 grew 12%.", 0.6, "d9")])
    vector = FakeVectorSearch([make_chunk("v1", "Q3 2023 revenue growth was 12%.", 0.9, "d1")])
    result = _run(AdaptiveRetriever(vector, FakeEmbedder(), keyword_search=keyword), query="Q3 2023 revenue growth")
    assert result.stages[0].strategy == "hybrid"
    assert keyword.calls and "revenue" in keyword.calls[0]
    assert {"k1", "v1"} <= {chunk.chunk_id for chunk in result.chunks}


def test_results_are_cached() -> None:
    cache = ResultCache()
    vector = FakeVectorSearch(_strong_results())
    retriever = AdaptiveRetriever(vector, FakeEmbedder(), cache=cache)
    first = _run(retriever)
    second = _run(retriever, query="  Tell me about the onboarding process for new staff ")
    assert not first.cached
    assert second.cached
    assert second.chunks == first.chunks
    assert len(vector.thresholds) == 1


def test_failed_runs_are_not_cached() -> None:
    cache = ResultCache()
    _run(AdaptiveRetriever(FakeVectorSearch(error=RuntimeError("down")), FakeEmbedder(), cache=cache))
    assert len(cache) == 0


def test_stage_events_are_published() -> None:
    async def scenario():
        events: asyncio.Queue = asyncio.Queue()
        retriever = AdaptiveRetriever(FakeVectorSearch(_weak_results()), FakeEmbedder(), stage_events=events)
        result = await retriever.retrieve(PLAIN_QUERY)
        published = []
        while not events.empty():
            published.append(events.get_nowait())
        return result, published

    result, published = asyncio.run(scenario())
    assert [stage.stage_index for stage in published] == [1, 2, 3]
    assert tuple(published) == result.stages


def test_adjacent_chunks_are_appended() -> None:
    stored = [
        make_chunk(f"doc-{i}", f"section {i} of the onboarding process for new staff", 0.0, "doc", i)
        for i in range(5)
    ]
    hit = make_chunk("doc-2", stored[2].content, 1.0, "doc", 2)
    fetcher = FakeChunkFetcher(stored)
    config = RetrievalConfig(enable_adjacent_chunks=True, adjacency_window=1, max_stages=1)
    retriever = AdaptiveRetriever(FakeVectorSearch([hit]), FakeEmbedder(), chunk_fetcher=fetcher, config=config)
    result = _run(retriever)
    ids = [chunk.chunk_id for chunk in result.chunks]
    assert ids == ["doc-2", "doc-1", "doc-3"]
    neighbours = result.chunks[1:]
    assert all(chunk.attributes["adjacent_to"] == "doc-2" for chunk in neighbours)
    assert all(chunk.similarity == pytest.approx(0.8) for chunk in neighbours)
    assert result.strategy.endswith("→adjacent")


def test_expand_query_adds_missing_terms() -> None:
    chunks = [make_chunk("a", "orientation orientation mentoring schedule", 0.9)]
    assert expand_query("staff onboarding", chunks) == "staff onboarding orientation mentoring schedule"
    assert expand_query("staff onboarding", []) == "staff onboarding"


def test_extract_keywords_drops_stopwords() -> None:
    assert extract_keywords("What was the Q3 revenue growth?") == ["revenue", "growth"]


def test_aggregate_chunks_groups_by_document() -> None:
    chunks = [
        make_chunk("b-3", "later part", 0.4, "b", 3),
        make_chunk("a-1", "only part", 0.6, "a", 1),
        make_chunk("b-1", "earlier part", 0.9, "b", 1),
    ]
    groups = aggregate_chunks(chunks)
    assert [group.document_id for group in groups] == ["b", "a"]
    assert [chunk.chunk_id for chunk in groups[0].chunks] == ["b-1", "b-3"]
    assert groups[0].max_similarity == pytest.approx(0.9)
    assert groups[0].content == "earlier part\n\nlater part"


def _clustered_results() -> list:
    content = "orientation mentoring schedule for onboarding staff"
    return [make_chunk(f"c{i}", content, 0.5, "d1") for i in range(4)]


def _linked_results() -> list:
    return [
        make_chunk("l1", "onboarding checklist covers laptops badges", 0.5, "d1"),
        make_chunk("l2", "onboarding checklist covers parking badges", 0.5, "d2"),
        make_chunk("l3", "onboarding checklist covers mentors badges", 0.5, "d3"),
    ]


def test_low_diversity_expands_the_query() -> None:
    vector = FakeVectorSearch(_clustered_results())
    embedder = FakeEmbedder()
    result = _run(AdaptiveRetriever(vector, embedder, config=RetrievalConfig(max_stages=2)))
    assert result.stages[1].strategy == "expansion"
    assert vector.match_counts == [20, 30]
    assert len(embedder.calls) == 2
    assert embedder.calls[1].startswith(PLAIN_QUERY)
    assert "orientation" in embedder.calls[1]


def test_expansion_searches_at_the_base_threshold() -> None:
    vector = FakeVectorSearch(_clustered_results())
    retriever = AdaptiveRetriever(vector, FakeEmbedder(), config=RetrievalConfig(max_stages=2))
    result = _run(retriever, query="explain staff onboarding")
    assert result.stages[1].strategy == "expansion"
    assert vector.thresholds == [pytest.approx(0.50), pytest.approx(0.45)]
    assert vector.match_counts == [15, 22]


def test_low_coherence_switches_to_keyword_search() -> None:
    keyword = FakeKeywordSearch([make_chunk("k1", "staff onboarding checklist", 0.6, "d4")])
    vector = FakeVectorSearch(_weak_results())
    config = RetrievalConfig(max_stages=2)
    result = _run(AdaptiveRetriever(vector, FakeEmbedder(), keyword_search=keyword, config=config))
    assert result.stages[1].strategy == "keyword"
    assert keyword.calls == [extract_keywords(PLAIN_QUERY)]
    assert len(vector.thresholds) == 1
    assert [chunk.chunk_id for chunk in result.stages[1].chunks] == ["k1"]


def test_varied_coherent_results_run_hybrid_second_stage() -> None:
    keyword = FakeKeywordSearch()
    vector = FakeVectorSearch(_linked_results())
    config = RetrievalConfig(max_stages=2)
    result = _run(AdaptiveRetriever(vector, FakeEmbedder(), keyword_search=keyword, config=config))
    assert result.stages[1].strategy == "hybrid"
    assert len(vector.thresholds) == 2
    assert keyword.calls == [extract_keywords(PLAIN_QUERY)]


def test_first_seen_chunk_wins_on_merge() -> None:
    keyword = FakeKeywordSearch(
        [
            make_chunk("a", "badge pickup moved to the lobby", 0.9, "d1"),
            make_chunk("k1", "staff onboarding checklist", 0.6, "d4"),
        ]
    )
    config = RetrievalConfig(max_stages=2)
    vector = FakeVectorSearch(_weak_results())
    retriever = AdaptiveRetriever(vector, FakeEmbedder(), keyword_search=keyword, config=config)
    result = _run(retriever)
    assert [chunk.chunk_id for chunk in result.stages[1].chunks] == ["k1"]
    kept = next(chunk for chunk in result.chunks if chunk.chunk_id == "a")
    assert kept.similarity == pytest.approx(0.5)
    assert kept.content == "badge pickup happens at reception"


def test_comprehensive_queries_widen_the_first_search() -> None:
    vector = FakeVectorSearch()
    _run(AdaptiveRetriever(vector, FakeEmbedder()), query="list every onboarding step for new staff")
    assert vector.match_counts == [60, 60]

    narrower = FakeVectorSearch()
    config = RetrievalConfig(comprehensive_match_count=40)
    _run(AdaptiveRetriever(narrower, FakeEmbedder(), config=config), query="list every onboarding step for new staff")
    assert narrower.match_counts == [40, 40]


def test_result_reports_completeness() -> None:
    result = _run(AdaptiveRetriever(FakeVectorSearch(_strong_results()), FakeEmbedder()))
    assert result.completeness == pytest.approx(0.3 * 0.6 + 0.3 * 0.2 + 0.4)
    empty = _run(AdaptiveRetriever(FakeVectorSearch(), FakeEmbedder()))
    assert empty.completeness == 0.0


def test_queued_calls_share_the_deadline() -> None:
    content = "We tell every hire about the onboarding process for new staff."
    hits = [make_chunk(f"h{i}", content, 1.0, f"d{i}", 1) for i in range(6)]
    neighbours = [make_chunk(f"n{i}", "neighbouring section", 0.0, f"d{i}", 2) for i in range(6)]
    fetcher = FakeChunkFetcher(neighbours, delay=0.3)
    config = RetrievalConfig(enable_adjacent_chunks=True, adjacency_window=1, max_concurrency=1, max_stages=1)
    retriever = AdaptiveRetriever(FakeVectorSearch(hits), FakeEmbedder(), chunk_fetcher=fetcher, config=config)

    async def scenario():
        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await retriever.retrieve(PLAIN_QUERY, deadline=started + 0.5)
        return result, loop.time() - started

    result, elapsed = asyncio.run(scenario())
    assert elapsed < 0.8
    assert {f"h{i}" for i in range(6)} <= {chunk.chunk_id for chunk in result.chunks}
    assert len(fetcher.document_calls) < 6
