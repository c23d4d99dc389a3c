"""Adaptive multi-stage retrieval orchestration."""

from __future__ import annotations

import asyncio
import re
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Awaitable, Sequence, TypeVar

from adaptive_rag.core.config import RetrievalConfig
from adaptive_rag.core.errors import BackendUnavailable, ComputationFallback
from adaptive_rag.core.logging import bind, get_logger
from adaptive_rag.core.metrics import (
    BACKEND_FAILURES,
    COMPUTATION_FALLBACKS,
    RETRIEVAL_COUNT,
    STAGE_LATENCY,
)
from adaptive_rag.models.entities import (
    Chunk,
    QueryContext,
    RetrievalResult,
    RetrievalStage,
    SearchStrategy,
    Specificity,
    clamp,
)
from adaptive_rag.retrieval import mmr
from adaptive_rag.retrieval.adjacency import expand_with_neighbours
from adaptive_rag.retrieval.backends import ChunkFetcher, Embedder, KeywordSearch, VectorSearch
from adaptive_rag.retrieval.cache import ResultCache
from adaptive_rag.retrieval.classifier import apply_entity_boosts, classify_query
from adaptive_rag.retrieval.rerank import Reranker, RerankStrategy
from adaptive_rag.retrieval.scoring import bm25_scores, completeness, stage_metrics
from adaptive_rag.utils.text import terms

logger = get_logger(__name__)

T = TypeVar("T")

TRAIL_SEPARATOR = "→"
FALLBACK_THRESHOLD_DROP = 0.05
LOW_DIVERSITY = 0.3
LOW_COHERENCE = 0.2

_STOPWORDS = frozenset(
    {
        "what", "when", "where", "which", "who", "whom", "whose", "why", "how",
        "does", "did", "have", "has", "had", "this", "that", "these", "those",
        "with", "from", "into", "about", "there", "their", "they", "were", "will",
        "would", "could", "should", "tell", "show", "give", "please",
    }
)
_HYBRID_FAMILY = frozenset({SearchStrategy.HYBRID, SearchStrategy.EXACT_MATCH, SearchStrategy.MULTI_STAGE})
_NON_WORD_RE = re.compile(r"[^\w\s]")


@dataclass(slots=True)
class _Run:
    """Mutable bookkeeping for a single ``retrieve`` call."""

    query: str
    config: RetrievalConfig
    context: QueryContext
    threshold: float
    limit: int
    deadline: float | None
    semaphore: asyncio.Semaphore
    embedding: list[float] | None = None
    pool: dict[str, Chunk] = field(default_factory=dict)
    stages: list[RetrievalStage] = field(default_factory=list)
    trail: list[str] = field(default_factory=list)
    failures: int = 0

    def merge(self, chunks: Sequence[Chunk]) -> list[Chunk]:
        """Add chunks not seen before; return only the new ones."""
        added: list[Chunk] = []
        for chunk in chunks:
            if chunk.chunk_id not in self.pool:
                self.pool[chunk.chunk_id] = chunk
                added.append(chunk)
        return added


class AdaptiveRetriever:
    """Runs classify, up to three search stages and a final MMR selection."""

    def __init__(
        self,
        vector_search: VectorSearch,
        embedder: Embedder,
        keyword_search: KeywordSearch | None = None,
        chunk_fetcher: ChunkFetcher | None = None,
        config: RetrievalConfig | None = None,
        cache: ResultCache | None = None,
        stage_events: asyncio.Queue[RetrievalStage] | None = None,
    ) -> None:
        self.vector_search = vector_search
        self.embedder = embedder
        self.keyword_search = keyword_search
        self.chunk_fetcher = chunk_fetcher
        self.config = config or RetrievalConfig()
        self.cache = cache
        self.stage_events = stage_events

    async def retrieve(
        self,
        query: str,
        config: RetrievalConfig | None = None,
        deadline: float | None = None,
    ) -> RetrievalResult:
        """Retrieve a diversified, confidence-scored chunk set for ``query``.

        ``deadline`` is an absolute ``loop.time()`` value; calls still pending
        when it passes are treated as failed backends. Only ``InputError``
        propagates.
        """
        config = config or self.config
        context = classify_query(query, base_threshold=config.similarity_threshold)

        cache_key = ResultCache.make_key(query, config) if self.cache is not None else None
        if cache_key is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                RETRIEVAL_COUNT.labels(outcome="cache").inc()
                return replace(cached, cached=True)

        run = _Run(
            query=context.query,
            config=config,
            context=context,
            threshold=context.suggested_threshold,
            limit=_match_limit(config, context),
            deadline=deadline,
            semaphore=asyncio.Semaphore(config.max_concurrency),
        )
        log = bind(logger, query=context.query, strategy=context.search_strategy.value)
        log.info("Retrieval started: %s", context.reasoning, extra={"ctx_threshold": run.threshold})

        result, outcome = await self._run_stages(run)
        if config.enable_adjacent_chunks and self.chunk_fetcher is not None and result.chunks:
            result = await self._attach_neighbours(run, result)
        RETRIEVAL_COUNT.labels(outcome=outcome).inc()
        log.info(
            "Retrieval finished with %d chunks via %s",
            len(result.chunks),
            result.strategy,
            extra={"ctx_confidence": round(result.total_confidence, 3), "ctx_degraded": result.degraded},
        )
        if cache_key is not None and run.failures == 0:
            self.cache.put(cache_key, result)
        return result

    # State machine ---------------------------------------------------------

    async def _run_stages(self, run: _Run) -> tuple[RetrievalResult, str]:
        run.embedding = await self._embed(run, run.query)

        label = "hybrid" if run.context.search_strategy in _HYBRID_FAMILY else "semantic"
        started = time.perf_counter()
        if label == "hybrid":
            found = await self._hybrid_search(run, run.query, run.limit)
        else:
            found = await self._semantic_search(run, run.embedding, run.limit, run.threshold)
        found = apply_entity_boosts(found, run.context)

        if not found:
            run.trail.append(label)
            lowered = max(0.0, round(run.threshold - FALLBACK_THRESHOLD_DROP, 2))
            logger.info("Stage 1 empty; retrying semantic search at threshold %.2f", lowered)
            found = await self._semantic_search(run, run.embedding, run.limit, lowered)
            found = apply_entity_boosts(found, run.context)
            if not found:
                self._record_stage(run, "fallback-empty", [], started)
                logger.warning("No candidates at threshold %.2f or %.2f", run.threshold, lowered)
                return self._assemble(run, []), "fallback-empty"
            run.threshold = lowered
            label = "fallback-semantic"
        self._record_stage(run, label, run.merge(found), started)

        if self._should_stop(run):
            return self._finalize(run), "stage1"

        await self._second_stage(run)
        if self._should_stop(run):
            return self._finalize(run), "stage2"

        return self._third_stage(run), "stage3"

    async def _second_stage(self, run: _Run) -> None:
        metrics = run.stages[-1].metrics
        started = time.perf_counter()
        if metrics.diversity < LOW_DIVERSITY:
            label = "expansion"
            ranked = sorted(run.pool.values(), key=lambda chunk: chunk.similarity, reverse=True)
            expanded = expand_query(run.query, ranked[:3])
            embedding = await self._embed(run, expanded) if expanded != run.query else run.embedding
            limit = max(run.limit, int(run.limit * run.config.expansion_factor))
            found = await self._semantic_search(run, embedding, limit, run.config.similarity_threshold)
        elif metrics.coherence < LOW_COHERENCE:
            label = "keyword"
            found = await self._keyword_search(run, extract_keywords(run.query), run.limit)
        else:
            label = "hybrid"
            found = await self._hybrid_search(run, run.query, run.limit)
        found = apply_entity_boosts(found, run.context)
        self._record_stage(run, label, run.merge(found), started)

    def _third_stage(self, run: _Run) -> RetrievalResult:
        config = run.config
        started = time.perf_counter()
        merged = list(run.pool.values())
        try:
            reranked = Reranker(config.semantic_weight, config.keyword_weight).score(
                run.query, merged, RerankStrategy.HYBRID
            )[: min(config.rerank_top_k, len(merged))]
        except (AttributeError, TypeError, ValueError) as exc:
            self._computation_fallback("rerank", exc)
            reranked = sorted(merged, key=lambda chunk: chunk.similarity, reverse=True)
        final = self._diversify(run, reranked, min(config.final_top_k, len(reranked)))
        self._record_stage(run, "hybrid-mmr", final, started, evaluated=final)
        return self._assemble(run, final)

    def _finalize(self, run: _Run) -> RetrievalResult:
        candidates = list(run.pool.values())
        final = self._diversify(run, candidates, min(run.config.final_top_k, len(candidates)))
        run.trail.append("mmr")
        return self._assemble(run, final)

    def _assemble(self, run: _Run, final: list[Chunk]) -> RetrievalResult:
        confidence = run.stages[-1].confidence if run.stages else 0.0
        degraded = confidence < run.config.min_confidence
        reasoning = [run.context.reasoning]
        for stage in run.stages:
            reasoning.append(
                f"stage {stage.stage_index} {stage.strategy}: {len(stage.chunks)} chunks, "
                f"confidence {stage.confidence:.2f}"
            )
        if not final:
            reasoning.append("no candidates found")
        elif degraded:
            reasoning.append(f"confidence below {run.config.min_confidence:.2f} after {len(run.stages)} stage(s)")
        return RetrievalResult(
            chunks=tuple(final),
            stages=tuple(run.stages),
            total_confidence=clamp(confidence),
            completeness=completeness(final, run.query),
            strategy=TRAIL_SEPARATOR.join(run.trail),
            reasoning="; ".join(reasoning),
            query_context=run.context,
            degraded=degraded,
        )

    def _should_stop(self, run: _Run) -> bool:
        last = run.stages[-1]
        if run.pool and last.confidence >= run.config.min_confidence:
            return True
        return len(run.stages) >= run.config.max_stages

    def _record_stage(
        self,
        run: _Run,
        label: str,
        chunks: Sequence[Chunk],
        started: float,
        evaluated: Sequence[Chunk] | None = None,
    ) -> RetrievalStage:
        scored = list(evaluated) if evaluated is not None else list(run.pool.values())
        score, metrics = stage_metrics(scored, run.query)
        elapsed = time.perf_counter() - started
        stage = RetrievalStage(
            stage_index=len(run.stages) + 1,
            strategy=label,
            chunks=tuple(chunks),
            confidence=score,
            metrics=metrics,
            duration_ms=elapsed * 1000,
        )
        run.stages.append(stage)
        run.trail.append(label)
        STAGE_LATENCY.labels(stage=label).observe(elapsed)
        logger.info(
            "Stage %d (%s): %d new chunks, confidence %.3f",
            stage.stage_index,
            label,
            len(chunks),
            score,
            extra={"ctx_stage": stage.stage_index, "ctx_strategy": label},
        )
        if self.stage_events is not None:
            self.stage_events.put_nowait(stage)
        return stage

    def _diversify(self, run: _Run, candidates: Sequence[Chunk], k: int) -> list[Chunk]:
        lambda_param = run.config.mmr_lambda
        if run.config.adaptive_lambda:
            lambda_param = mmr.adaptive_lambda(run.query, default=lambda_param)
        try:
            return mmr.select(candidates, k, lambda_param)
        except (AttributeError, TypeError, ValueError) as exc:
            self._computation_fallback("mmr", exc)
            return sorted(candidates, key=lambda chunk: chunk.similarity, reverse=True)[:k]

    def _computation_fallback(self, component: str, exc: Exception) -> None:
        COMPUTATION_FALLBACKS.labels(component=component).inc()
        logger.warning("%s", ComputationFallback(component, exc))

    # External calls --------------------------------------------------------

    async def _guarded(self, run: _Run, backend: str, call: Awaitable[list[Chunk]]) -> list[Chunk]:
        """Await ``call`` within the deadline; failures become empty results.

        The budget covers the wait for a concurrency slot as well as the call.
        """
        timeout = _remaining(run)
        if timeout <= 0:
            _discard(call)
            self._backend_failed(run, backend, "deadline expired")
            return []
        try:
            result = await asyncio.wait_for(_limited(run.semaphore, call), timeout=timeout)
        except asyncio.TimeoutError:
            self._backend_failed(run, backend, f"timed out after {timeout:.2f}s")
            return []
        except Exception as exc:  # noqa: BLE001
            self._backend_failed(run, backend, f"{type(exc).__name__}: {exc}")
            return []
        return _sanitize(result or [])

    def _backend_failed(self, run: _Run, backend: str, reason: str) -> None:
        run.failures += 1
        BACKEND_FAILURES.labels(backend=backend).inc()
        logger.warning("%s", BackendUnavailable(backend, reason), extra={"ctx_backend": backend})

    async def _embed(self, run: _Run, text: str) -> list[float] | None:
        timeout = _remaining(run)
        if timeout <= 0:
            self._backend_failed(run, "embed", "deadline expired")
            return None
        try:
            return list(await asyncio.wait_for(_limited(run.semaphore, self.embedder.embed(text)), timeout=timeout))
        except asyncio.TimeoutError:
            self._backend_failed(run, "embed", f"timed out after {timeout:.2f}s")
        except Exception as exc:  # noqa: BLE001
            self._backend_failed(run, "embed", f"{type(exc).__name__}: {exc}")
        return None

    async def _semantic_search(
        self,
        run: _Run,
        embedding: list[float] | None,
        limit: int,
        threshold: float,
    ) -> list[Chunk]:
        if embedding is None:
            logger.warning("Skipping vector search without a query embedding")
            return []
        return await self._guarded(
            run,
            "vector_search",
            self.vector_search.vector_search(embedding, limit, threshold),
        )

    async def _keyword_search(self, run: _Run, keywords: list[str], limit: int) -> list[Chunk]:
        if self.keyword_search is None or not keywords:
            return []
        return await self._guarded(run, "keyword_search", self.keyword_search.keyword_search(keywords, limit))

    async def _hybrid_search(self, run: _Run, query: str, limit: int) -> list[Chunk]:
        """Semantic and keyword search in parallel; semantic hits are fused with BM25."""
        semantic, keyword = await asyncio.gather(
            self._semantic_search(run, run.embedding, limit, run.threshold),
            self._keyword_search(run, extract_keywords(query), limit),
        )
        config = run.config
        if semantic:
            raw = bm25_scores(query, [chunk.content for chunk in semantic])
            top = max(raw)
            semantic = [
                chunk.with_similarity(
                    config.semantic_weight * chunk.similarity
                    + config.keyword_weight * (score / top if top > 0 else 0.0)
                )
                for chunk, score in zip(semantic, raw)
            ]
        combined: dict[str, Chunk] = {}
        for chunk in [*semantic, *keyword]:
            combined.setdefault(chunk.chunk_id, chunk)
        ranked = sorted(combined.values(), key=lambda chunk: chunk.similarity, reverse=True)
        return ranked[:limit]

    async def _attach_neighbours(self, run: _Run, result: RetrievalResult) -> RetrievalResult:
        """Append chunks adjacent to the selection, tagged with ``adjacent_to``."""
        expanded = await expand_with_neighbours(
            result.chunks,
            self.chunk_fetcher,
            run.config.adjacency_window,
            lambda backend, call: self._guarded(run, backend, call),
        )
        added = len(expanded) - len(result.chunks)
        if added == 0:
            return result
        return replace(
            result,
            chunks=tuple(expanded),
            completeness=completeness(expanded, run.query),
            strategy=f"{result.strategy}{TRAIL_SEPARATOR}adjacent",
            reasoning=f"{result.reasoning}; added {added} adjacent chunks",
        )


# ----------------------------------------------------------------------------


def expand_query(query: str, top_chunks: Sequence[Chunk], per_chunk: int = 3) -> str:
    """Append frequent long terms from the top chunks that the query lacks."""
    present = set(terms(query, longer_than=0))
    additions: list[str] = []
    for chunk in top_chunks:
        counts = Counter(term for term in terms(chunk.content, longer_than=5) if term not in present)
        for term, _ in counts.most_common(per_chunk):
            if term not in additions:
                additions.append(term)
    if not additions:
        return query
    return f"{query} {' '.join(additions)}"


def extract_keywords(query: str) -> list[str]:
    words = _NON_WORD_RE.sub(" ", query.lower()).split()
    keywords = [word for word in words if len(word) > 3 and word not in _STOPWORDS]
    return list(dict.fromkeys(keywords))


def _match_limit(config: RetrievalConfig, context: QueryContext) -> int:
    if context.is_comprehensive:
        return config.comprehensive_match_count
    base = config.initial_match_count
    if context.specificity is Specificity.SPECIFIC:
        return max(1, int(base * 0.75))
    if context.specificity is Specificity.BROAD:
        return int(base * 1.5)
    return base


def _remaining(run: _Run) -> float:
    timeout = run.config.backend_timeout_seconds
    if run.deadline is not None:
        timeout = min(timeout, run.deadline - asyncio.get_running_loop().time())
    return timeout


async def _limited(semaphore: asyncio.Semaphore, call: Awaitable[T]) -> T:
    try:
        async with semaphore:
            return await call
    finally:
        # no-op once awaited; closes a call cancelled while still queued
        _discard(call)


def _discard(call: Awaitable[object]) -> None:
    if asyncio.iscoroutine(call):
        call.close()


def _sanitize(chunks: Sequence[Chunk]) -> list[Chunk]:
    cleaned: list[Chunk] = []
    for chunk in chunks:
        if not isinstance(chunk, Chunk) or not chunk.chunk_id:
            logger.warning("Dropping malformed backend record: %r", chunk)
            continue
        if not 0.0 <= chunk.similarity <= 1.0:
            chunk = chunk.with_similarity(chunk.similarity)
        cleaned.append(chunk)
    return cleaned


__all__ = ["AdaptiveRetriever", "expand_query", "extract_keywords"]
