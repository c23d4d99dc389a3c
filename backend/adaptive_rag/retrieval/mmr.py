"""Maximal marginal relevance selection."""

from __future__ import annotations

import re
from typing import Sequence

from adaptive_rag.models.entities import Chunk
from adaptive_rag.utils.text import jaccard, terms

DEFAULT_LAMBDA = 0.7

_COMPREHENSIVE_RE = re.compile(r"\b(?:all|every|complete|comprehensive|full|entire)\b", re.I)
_SPECIFIC_RE = re.compile(r"\b(?:specific|exact|particular|single)\b", re.I)
_COMPARISON_RE = re.compile(r"\b(?:compare|versus|vs|between|difference)\b", re.I)


def select(candidates: Sequence[Chunk], k: int, lambda_param: float = DEFAULT_LAMBDA) -> list[Chunk]:
    """Greedy MMR; ties keep the candidate ranked earlier by relevance."""
    if not 0.0 <= lambda_param <= 1.0:
        raise ValueError(f"lambda must be within [0, 1], got {lambda_param}")
    if k <= 0 or not candidates:
        return []

    ranked: list[Chunk] = []
    seen: set[str] = set()
    for chunk in sorted(candidates, key=lambda item: item.relevance, reverse=True):
        if chunk.chunk_id in seen:
            continue
        seen.add(chunk.chunk_id)
        ranked.append(chunk)

    term_sets = {chunk.chunk_id: set(terms(chunk.content, longer_than=2)) for chunk in ranked}
    selected = [ranked[0]]
    remaining = ranked[1:]
    while remaining and len(selected) < k:
        best_index = 0
        best_score = float("-inf")
        for index, candidate in enumerate(remaining):
            redundancy = 0.0
            if lambda_param < 1.0:
                candidate_terms = term_sets[candidate.chunk_id]
                redundancy = max(jaccard(candidate_terms, term_sets[chosen.chunk_id]) for chosen in selected)
            score = lambda_param * candidate.relevance - (1 - lambda_param) * redundancy
            if score > best_score:
                best_score = score
                best_index = index
        selected.append(remaining.pop(best_index))
    return selected


def adaptive_lambda(query: str, default: float = DEFAULT_LAMBDA) -> float:
    """Pick the relevance/diversity balance from the wording of the query."""
    if _COMPREHENSIVE_RE.search(query):
        return 0.5
    if _SPECIFIC_RE.search(query):
        return 0.9
    if _COMPARISON_RE.search(query):
        return 0.6
    return default


__all__ = ["DEFAULT_LAMBDA", "select", "adaptive_lambda"]
