"""Ingest pipeline orchestration."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Iterable, Sequence

from adaptive_rag.core.config import ChunkingConfig
from adaptive_rag.core.errors import InputError
from adaptive_rag.core.logging import get_logger
from adaptive_rag.core.metrics import INGEST_DURATION
from adaptive_rag.ingest.chunker import chunk_document
from adaptive_rag.ingest.embeddings import HashingEmbedder
from adaptive_rag.ingest.types import IngestResult, IngestStats
from adaptive_rag.retrieval.vector_index import InMemoryChunkStore
from adaptive_rag.utils.hashing import content_digest, document_id_for

logger = get_logger(__name__)

SUPPORTED_SUFFIXES = (".md", ".markdown", ".txt")


class IngestPipeline:
    """Coordinate chunking, embeddings and indexing into an in-memory store."""

    def __init__(
        self,
        store: InMemoryChunkStore,
        embedder: HashingEmbedder | None = None,
        config: ChunkingConfig | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder or HashingEmbedder(store.dim)
        self.config = config or ChunkingConfig()
        self._digests: dict[str, str] = {}

    def ingest_text(self, text: str, document_id: str | None = None, path: Path | None = None) -> IngestResult:
        digest = content_digest(text)
        existing = self._digests.get(digest)
        if existing is not None:
            logger.debug("Skipping duplicate document %s", path or existing)
            return IngestResult(document_id=existing, path=path, status="skipped")

        try:
            chunks = chunk_document(text, self.config, document_id=document_id or document_id_for(text, digest))
        except InputError as exc:
            logger.warning("Document %s produced no chunks: %s", path or document_id, exc)
            return IngestResult(document_id=document_id, path=path, status="skipped", detail=str(exc))

        batch = self.embedder.encode([chunk.content for chunk in chunks])
        self.store.upsert(chunks, batch.vectors)
        resolved_id = chunks[0].document_id
        self._digests[digest] = resolved_id
        return IngestResult(document_id=resolved_id, path=path, status="processed", chunks=chunks)

    def ingest_paths(self, paths: Sequence[Path]) -> dict[str, object]:
        stats = IngestStats()
        results: list[IngestResult] = []
        started = time.perf_counter()
        for path in _expand(paths):
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.exception("Failed to load %s: %s", path, exc)
                result = IngestResult(document_id=None, path=path, status="error", detail=str(exc))
            else:
                result = self.ingest_text(text, document_id=path.stem, path=path)
            results.append(result)
            stats.record(result)
        INGEST_DURATION.labels(source="paths").observe(time.perf_counter() - started)
        logger.info(
            "Ingested %d documents (%d chunks)",
            stats.processed,
            stats.chunks,
            extra={"ctx_skipped": stats.skipped, "ctx_failed": stats.failed},
        )
        return {"stats": stats.to_dict(), "results": [result.to_dict() for result in results]}


def _expand(paths: Iterable[Path]) -> Iterable[Path]:
    for path in paths:
        path = path.expanduser()
        if path.is_dir():
            yield from sorted(
                candidate
                for candidate in path.rglob("*")
                if candidate.is_file() and candidate.suffix.lower() in SUPPORTED_SUFFIXES
            )
        else:
            yield path


__all__ = ["IngestPipeline", "SUPPORTED_SUFFIXES"]
