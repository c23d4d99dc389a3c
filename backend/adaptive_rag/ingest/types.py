"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Literal, Sequence

from adaptive_rag.models.entities import Chunk

IngestStatus = Literal["processed", "skipped", "error"]


@dataclass(slots=True)
class IngestResult:
    """Outcome for a single document."""

    document_id: str | None
    path: Path | None
    status: IngestStatus
    detail: str | None = None
    chunks: Sequence[Chunk] | None = None

    @property
    def chunk_count(self) -> int:
        return len(self.chunks or [])

    def to_dict(self) -> dict[str, object]:
        return {
            "document_id": self.document_id,
            "path": str(self.path) if self.path is not None else None,
            "status": self.status,
            "detail": self.detail,
            "chunks": self.chunk_count,
        }


@dataclass(slots=True)
class IngestStats:
    """Running totals over a batch of ingest results."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    chunks: int = 0

    def record(self, result: IngestResult) -> None:
        if result.status == "processed":
            self.processed += 1
            self.chunks += result.chunk_count
        elif result.status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


__all__ = ["IngestStatus", "IngestResult", "IngestStats"]
