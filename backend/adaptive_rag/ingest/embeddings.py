"""Deterministic hashed embeddings for local indexing and tests."""

from __future__ import annotations

import hashlib
import math
import re
from dataclasses import dataclass
from typing import Iterable

_TOKEN_RE = re.compile(r"\w+")


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    dim: int


class HashingEmbedder:
    """Bag-of-words vectors hashed into ``dim`` slots and L2-normalized.

    Stands in for a real embedding service; satisfies the ``Embedder`` protocol.
    """

    def __init__(self, dim: int = 384) -> None:
        if dim <= 0:
            raise ValueError("dim must be positive")
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    def encode(self, texts: Iterable[str]) -> EmbeddingBatch:
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self._dim
            for token in _tokenize(text):
                vector[_hash_token(token, self._dim)] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return EmbeddingBatch(vectors=vectors, dim=self._dim)

    async def embed(self, text: str) -> list[float]:
        return self.encode([text]).vectors[0]


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = ["HashingEmbedder", "EmbeddingBatch"]
