"""Neighbouring-chunk expansion and per-document aggregation."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Sequence

from adaptive_rag.models.entities import Chunk
from adaptive_rag.retrieval.backends import ChunkFetcher

logger = logging.getLogger(__name__)

ADJACENT_SIMILARITY_FACTOR = 0.8

Guard = Callable[[str, Awaitable[list[Chunk]]], Awaitable[list[Chunk]]]


@dataclass(slots=True)
class DocumentGroup:
    document_id: str
    chunks: list[Chunk]
    max_similarity: float

    @property
    def content(self) -> str:
        return "\n\n".join(chunk.content for chunk in self.chunks)


async def expand_with_neighbours(
    selected: Sequence[Chunk],
    fetcher: ChunkFetcher,
    window: int,
    guard: Guard,
) -> list[Chunk]:
    """Return ``selected`` followed by chunks within ``window`` positions of them.

    ``guard`` wraps every fetch with the caller's deadline, concurrency limit
    and failure policy; a failed fetch contributes nothing.
    """
    if window <= 0 or not selected:
        return list(selected)

    indexed = list(selected)
    missing = [chunk.chunk_id for chunk in indexed if chunk.chunk_index is None]
    if missing:
        found = await guard("fetch_by_ids", fetcher.fetch_by_ids(missing))
        resolved = {chunk.chunk_id: chunk.chunk_index for chunk in found}
        indexed = [
            chunk if chunk.chunk_index is not None else _with_index(chunk, resolved.get(chunk.chunk_id))
            for chunk in indexed
        ]

    seen = {chunk.chunk_id for chunk in indexed}
    wanted: dict[str, dict[int, Chunk]] = defaultdict(dict)
    for chunk in indexed:
        if chunk.chunk_index is None:
            continue
        for offset in range(-window, window + 1):
            position = chunk.chunk_index + offset
            if offset == 0 or position < 0:
                continue
            origin = wanted[chunk.document_id].get(position)
            if origin is None or origin.similarity < chunk.similarity:
                wanted[chunk.document_id][position] = chunk

    if not wanted:
        return indexed

    document_ids = list(wanted)
    fetched = await asyncio.gather(
        *(
            guard(
                "fetch_by_document_and_indices",
                fetcher.fetch_by_document_and_indices(document_id, sorted(wanted[document_id])),
            )
            for document_id in document_ids
        )
    )

    neighbours: list[Chunk] = []
    for document_id, chunks in zip(document_ids, fetched):
        origins = wanted[document_id]
        for neighbour in chunks:
            if neighbour.chunk_id in seen or neighbour.chunk_index not in origins:
                continue
            origin = origins[neighbour.chunk_index]
            seen.add(neighbour.chunk_id)
            neighbours.append(
                neighbour.with_similarity(origin.similarity * ADJACENT_SIMILARITY_FACTOR).with_attributes(
                    adjacent_to=origin.chunk_id
                )
            )
    neighbours.sort(key=lambda chunk: (chunk.document_id, chunk.chunk_index or 0))
    logger.debug("Added %d adjacent chunks for %d selected", len(neighbours), len(indexed))
    return indexed + neighbours


def aggregate_chunks(chunks: Sequence[Chunk]) -> list[DocumentGroup]:
    """Group chunks by document in reading order, strongest document first."""
    groups: dict[str, list[Chunk]] = defaultdict(list)
    for chunk in chunks:
        groups[chunk.document_id].append(chunk)
    result = [
        DocumentGroup(
            document_id=document_id,
            chunks=sorted(members, key=lambda chunk: (chunk.chunk_index is None, chunk.chunk_index or 0)),
            max_similarity=max(chunk.similarity for chunk in members),
        )
        for document_id, members in groups.items()
    ]
    result.sort(key=lambda group: group.max_similarity, reverse=True)
    return result


def _with_index(chunk: Chunk, index: int | None) -> Chunk:
    if index is None:
        return chunk
    return replace(chunk, chunk_index=index)


__all__ = ["ADJACENT_SIMILARITY_FACTOR", "DocumentGroup", "expand_with_neighbours", "aggregate_chunks"]
