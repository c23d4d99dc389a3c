"""Text processing helpers shared by scoring, selection and chunking."""

from __future__ import annotations

import math
import re
from collections import Counter
from typing import Iterable

WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_WORD_RE = re.compile(r"\w")
_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_BREAK_RE = re.compile(r"(?<=[.!?])\s+")
_SENTENCE_END_RE = re.compile(r"[.!?]+")
_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)*")
_CAPITALIZED_RE = re.compile(r"\b[A-Z][a-zA-Z]+\b")
_PUNCTUATION_RE = re.compile(r"[(){}\[\]<>:;,.\-]")

ABBREVIATIONS = frozenset(
    {
        "dr.", "mr.", "mrs.", "ms.", "prof.", "sr.", "jr.", "st.",
        "inc.", "ltd.", "co.", "corp.", "vs.", "etc.", "e.g.", "i.e.", "no.",
    }
)


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def has_words(text: str) -> bool:
    return bool(_WORD_RE.search(text or ""))


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation and keep tokens longer than two characters."""
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return [token for token in cleaned.split() if len(token) > 2]


def terms(text: str, longer_than: int) -> list[str]:
    """Punctuation-stripped lowercase words strictly longer than ``longer_than``."""
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return [token for token in cleaned.split() if len(token) > longer_than]


def term_frequencies(tokens: Iterable[str]) -> Counter[str]:
    return Counter(tokens)


def jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def estimate_tokens(text: str) -> int:
    """Rough token estimate at four characters per token."""
    return math.ceil(len(text) / 4)


def split_paragraphs(text: str) -> list[str]:
    return [part.strip() for part in _PARAGRAPH_RE.split(text) if part.strip()]


def split_sentences(text: str) -> list[str]:
    """Split on terminal punctuation, keeping abbreviations such as "Dr." or "e.g." intact."""
    pieces = [piece for piece in _SENTENCE_BREAK_RE.split(text.strip()) if piece]
    sentences: list[str] = []
    for piece in pieces:
        if sentences and _continues_sentence(sentences[-1], piece):
            sentences[-1] = f"{sentences[-1]} {piece}"
        else:
            sentences.append(piece)
    return sentences


def _continues_sentence(previous: str, piece: str) -> bool:
    last_word = previous.rsplit(None, 1)[-1].lower()
    if last_word in ABBREVIATIONS:
        return True
    return piece[:1].islower()


def density_score(text: str) -> float:
    """Information density in [0, 1] used to shrink chunk targets for dense text."""
    words = text.split()
    word_count = len(words)
    if word_count == 0:
        return 0.0
    numeric = min(len(_NUMBER_RE.findall(text)) / word_count, 0.3) / 0.3
    capitals = min(len(_CAPITALIZED_RE.findall(text)) / word_count, 0.2) / 0.2
    punctuation = min(len(_PUNCTUATION_RE.findall(text)) / word_count, 0.5) / 0.5
    sentence_count = max(1, len([part for part in _SENTENCE_END_RE.split(text) if part.strip()]))
    complexity = min((word_count / sentence_count) / 25, 1.0)
    score = numeric * 0.3 + capitals * 0.2 + punctuation * 0.2 + complexity * 0.3
    return max(0.0, min(1.0, score))


__all__ = [
    "ABBREVIATIONS",
    "WHITESPACE_RE",
    "normalize",
    "has_words",
    "tokenize",
    "terms",
    "term_frequencies",
    "jaccard",
    "estimate_tokens",
    "split_paragraphs",
    "split_sentences",
    "density_score",
]
