"""Structure-aware semantic chunking."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from markdown_it import MarkdownIt

from adaptive_rag.core.config import ChunkingConfig
from adaptive_rag.core.errors import InputError
from adaptive_rag.core.logging import get_logger
from adaptive_rag.core.metrics import CHUNKS_PRODUCED
from adaptive_rag.ingest.metadata import extract_metadata
from adaptive_rag.models.entities import Chunk, ContentType
from adaptive_rag.utils.hashing import document_id_for
from adaptive_rag.utils.text import density_score, estimate_tokens, split_paragraphs, split_sentences

logger = get_logger(__name__)

_MARKDOWN = MarkdownIt("commonmark")
_PATH_SEPARATOR = " > "

_LIST_LINE_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
_TABLE_LINE_RE = re.compile(r"^\s*\|.*\|\s*$")
_HEADER_LINE_RE = re.compile(r"^\s*#{1,6}\s+")
_FENCE_RE = re.compile(r"^\s*(?:```|~~~)")


@dataclass(slots=True)
class Section:
    title: str
    level: int
    path: str
    body: str


@dataclass(slots=True)
class _Piece:
    text: str
    section: str


def chunk_document(
    text: str,
    config: ChunkingConfig | None = None,
    document_id: str | None = None,
) -> list[Chunk]:
    """Split ``text`` into ordered chunks; identical input and config give identical output."""
    config = config or ChunkingConfig()
    if not text or not text.strip():
        raise InputError("document is empty")
    document_id = document_id or document_id_for(text)

    if config.preserve_structure:
        sections = parse_sections(text)
    else:
        sections = [Section(title="", level=0, path="", body=text)]

    pieces: list[_Piece] = []
    for section in sections:
        paragraphs = split_paragraphs(section.body)
        if paragraphs:
            pieces.extend(_pack_paragraphs(paragraphs, section.path, config))

    pieces = _merge_small(pieces, config)
    texts = _with_overlap(pieces, config)

    chunks: list[Chunk] = []
    for index, (piece, content) in enumerate(zip(pieces, texts)):
        chunks.append(
            Chunk(
                chunk_id=f"{document_id}-chunk-{index:04d}",
                document_id=document_id,
                content=content,
                chunk_index=index,
                metadata=extract_metadata(content) if config.extract_metadata else None,
                attributes={
                    "section": piece.section,
                    "position": index,
                    "token_count": estimate_tokens(content),
                    "content_type": detect_content_type(content).value,
                    "density": round(density_score(content), 4),
                    "overlap_before": index > 0 and not content.startswith(piece.text),
                    "overlap_after": index < len(pieces) - 1 and not content.endswith(piece.text),
                },
            )
        )
    CHUNKS_PRODUCED.inc(len(chunks))
    logger.debug("Chunked document %s into %d chunks", document_id, len(chunks))
    return chunks


def parse_sections(text: str) -> list[Section]:
    """Flatten the heading hierarchy into sections carrying their "A > B" path."""
    lines = text.splitlines()
    tokens = _MARKDOWN.parse(text)
    headings: list[tuple[int, int, str]] = []
    for position, token in enumerate(tokens):
        if token.type != "heading_open" or token.level != 0 or not token.map:
            continue
        inline = tokens[position + 1] if position + 1 < len(tokens) else None
        title = inline.content.strip() if inline is not None and inline.type == "inline" else ""
        headings.append((token.map[0], int(token.tag[1:]), title))

    sections: list[Section] = []
    preamble_end = headings[0][0] if headings else len(lines)
    preamble = "\n".join(lines[:preamble_end])
    if preamble.strip():
        sections.append(Section(title="", level=0, path="", body=preamble))

    stack: list[tuple[int, str]] = []
    for index, (start, level, title) in enumerate(headings):
        next_start = headings[index + 1][0] if index + 1 < len(headings) else len(lines)
        while stack and stack[-1][0] >= level:
            stack.pop()
        stack.append((level, title))
        sections.append(
            Section(
                title=title,
                level=level,
                path=_PATH_SEPARATOR.join(name for _, name in stack if name),
                body="\n".join(lines[start:next_start]),
            )
        )
    return sections


def detect_content_type(text: str) -> ContentType:
    kinds: set[ContentType] = set()
    in_fence = False
    for line in text.splitlines():
        if not line.strip():
            continue
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            kinds.add(ContentType.CODE)
        elif in_fence:
            kinds.add(ContentType.CODE)
        elif _TABLE_LINE_RE.match(line):
            kinds.add(ContentType.TABLE)
        elif _LIST_LINE_RE.match(line):
            kinds.add(ContentType.LIST)
        elif _HEADER_LINE_RE.match(line):
            kinds.add(ContentType.HEADER)
        else:
            kinds.add(ContentType.PARAGRAPH)
    if len(kinds) == 1:
        return kinds.pop()
    if not kinds:
        return ContentType.PARAGRAPH
    return ContentType.MIXED


def adjusted_target(text: str, config: ChunkingConfig) -> int:
    """Shrink the target for dense text: ``target * (1 - density * 0.3)``."""
    if not config.adaptive_size:
        return config.target_tokens
    target = round(config.target_tokens * (1 - density_score(text) * 0.3))
    return max(config.min_tokens, min(target, config.max_tokens))


# Packing ---------------------------------------------------------------------


def _pack_paragraphs(paragraphs: Sequence[str], section: str, config: ChunkingConfig) -> list[_Piece]:
    pieces: list[_Piece] = []
    current: list[str] = []

    for paragraph in paragraphs:
        if estimate_tokens(paragraph) > config.max_tokens:
            _flush(pieces, current, "\n\n", section)
            pieces.extend(_pack_sentences(paragraph, section, config))
            continue
        candidate = "\n\n".join([*current, paragraph])
        if current and estimate_tokens(candidate) > config.max_tokens:
            _flush(pieces, current, "\n\n", section)
            candidate = paragraph
        current.append(paragraph)
        if estimate_tokens(candidate) >= adjusted_target(candidate, config):
            _flush(pieces, current, "\n\n", section)
    _flush(pieces, current, "\n\n", section)
    return pieces


def _pack_sentences(paragraph: str, section: str, config: ChunkingConfig) -> list[_Piece]:
    pieces: list[_Piece] = []
    current: list[str] = []

    for sentence in split_sentences(paragraph):
        tokens = estimate_tokens(sentence)
        if tokens > config.max_tokens:
            _flush(pieces, current, " ", section)
            logger.warning(
                "Emitting unsplittable sentence of %d tokens (max %d)",
                tokens,
                config.max_tokens,
                extra={"ctx_section": section},
            )
            pieces.append(_Piece(text=sentence, section=section))
            continue
        candidate = " ".join([*current, sentence])
        if current and estimate_tokens(candidate) > config.max_tokens:
            _flush(pieces, current, " ", section)
            candidate = sentence
        current.append(sentence)
        if estimate_tokens(candidate) >= adjusted_target(candidate, config):
            _flush(pieces, current, " ", section)
    _flush(pieces, current, " ", section)
    return pieces


def _flush(pieces: list[_Piece], current: list[str], joiner: str, section: str) -> None:
    if current:
        pieces.append(_Piece(text=joiner.join(current), section=section))
        current.clear()


# Merging & overlap ---------------------------------------------------------------


def _merge_small(pieces: Sequence[_Piece], config: ChunkingConfig) -> list[_Piece]:
    """Fold pieces under the minimum into their predecessor, rebalancing on overflow."""
    merged: list[_Piece] = []
    for piece in pieces:
        if merged and (
            estimate_tokens(piece.text) < config.min_tokens
            or estimate_tokens(merged[-1].text) < config.min_tokens
        ):
            previous = merged[-1]
            combined = f"{previous.text}\n\n{piece.text}"
            if estimate_tokens(combined) <= config.max_tokens:
                merged[-1] = _Piece(text=combined, section=previous.section)
                continue
            left, right = _rebalance(previous, piece, config)
            merged[-1] = left
            merged.append(right)
            continue
        merged.append(piece)
    return merged


def _rebalance(left: _Piece, right: _Piece, config: ChunkingConfig) -> tuple[_Piece, _Piece]:
    """Move the sentence boundary between two pieces so both fit the budget."""
    sentences = split_sentences(left.text) + split_sentences(right.text)
    best: tuple[int, int] | None = None
    for cut in range(1, len(sentences)):
        left_tokens = estimate_tokens(" ".join(sentences[:cut]))
        right_tokens = estimate_tokens(" ".join(sentences[cut:]))
        if left_tokens > config.max_tokens or right_tokens > config.max_tokens:
            continue
        smaller = min(left_tokens, right_tokens)
        if best is None or smaller > best[1]:
            best = (cut, smaller)
    if best is None:
        return left, right
    cut = best[0]
    return (
        _Piece(text=" ".join(sentences[:cut]), section=left.section),
        _Piece(text=" ".join(sentences[cut:]), section=right.section),
    )


def _with_overlap(pieces: Sequence[_Piece], config: ChunkingConfig) -> list[str]:
    """Borrow trailing/leading sentences from neighbours without exceeding the maximum."""
    texts = [piece.text for piece in pieces]
    if config.overlap_tokens <= 0 or len(pieces) < 2:
        return texts
    result: list[str] = []
    for index, text in enumerate(texts):
        if index > 0:
            budget = min(config.overlap_tokens, config.max_tokens - estimate_tokens(text) - 1)
            tail = _take(reversed(split_sentences(texts[index - 1])), budget)
            if tail:
                text = f"{' '.join(reversed(tail))}\n\n{text}"
        if index < len(texts) - 1:
            budget = min(config.overlap_tokens, config.max_tokens - estimate_tokens(text) - 1)
            head = _take(split_sentences(texts[index + 1]), budget)
            if head:
                text = f"{text}\n\n{' '.join(head)}"
        result.append(text)
    return result


def _take(sentences: Iterable[str], budget: int) -> list[str]:
    taken: list[str] = []
    for sentence in sentences:
        if budget <= 0 or estimate_tokens(" ".join([*taken, sentence])) > budget:
            break
        taken.append(sentence)
    return taken


__all__ = ["Section", "chunk_document", "parse_sections", "detect_content_type", "adjusted_target"]
