"""Error taxonomy for retrieval and ingestion."""

from __future__ import annotations


class RetrievalError(Exception):
    """Base class for engine errors."""


class InputError(RetrievalError, ValueError):
    """Empty or untokenizable query or document; surfaced to the caller."""


class BackendUnavailable(RetrievalError):
    """An external call failed or ran past its deadline."""

    def __init__(self, backend: str, reason: str) -> None:
        super().__init__(f"{backend} unavailable: {reason}")
        self.backend = backend
        self.reason = reason


class ComputationFallback(RetrievalError):
    """Reranking or MMR could not score its input; similarity order is used instead."""

    def __init__(self, component: str, cause: BaseException) -> None:
        super().__init__(f"{component} fell back to similarity order: {cause}")
        self.component = component
        self.cause = cause


__all__ = ["RetrievalError", "InputError", "BackendUnavailable", "ComputationFallback"]
