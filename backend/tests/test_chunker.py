"""Tests for the semantic chunker."""

import logging

import pytest

from adaptive_rag.core.config import ChunkingConfig
from adaptive_rag.core.errors import InputError
from adaptive_rag.ingest.chunker import adjusted_target, chunk_document, detect_content_type, parse_sections
from adaptive_rag.models.entities import ContentType

SENTENCE = "Retrieval quality depends on careful chunking of long reference documents."
PARAGRAPH = " ".join([SENTENCE] * 6)
LONG_DOCUMENT = "\n\n".join([PARAGRAPH] * 18)

GUIDE = "# Guide\n\nIntro paragraph.\n\n## Setup\n\nInstall it.\n\n## Usage\n\nRun it."


def test_long_document_chunks_within_bounds() -> None:
    config = ChunkingConfig(target_tokens=500, max_tokens=800, min_tokens=200)
    chunks = chunk_document(LONG_DOCUMENT, config, document_id="handbook")
    assert 3 <= len(chunks) <= 5
    assert all(chunk.attributes["token_count"] <= 800 for chunk in chunks)
    assert all(chunk.attributes["token_count"] >= 200 for chunk in chunks[:-1])
    assert [chunk.chunk_index for chunk in chunks] == list(range(len(chunks)))
    assert len({chunk.chunk_id for chunk in chunks}) == len(chunks)
    assert chunks[0].chunk_id == "handbook-chunk-0000"


def test_overlap_flags_and_shared_sentences() -> None:
    chunks = chunk_document(LONG_DOCUMENT, ChunkingConfig(), document_id="handbook")
    assert not chunks[0].attributes["overlap_before"]
    assert chunks[0].attributes["overlap_after"]
    assert chunks[1].attributes["overlap_before"]
    assert not chunks[-1].attributes["overlap_after"]
    assert SENTENCE in chunks[1].content


def test_chunking_is_deterministic() -> None:
    assert chunk_document(LONG_DOCUMENT) == chunk_document(LONG_DOCUMENT)
    assert chunk_document(LONG_DOCUMENT)[0].document_id.startswith("doc_")


def test_empty_document_is_rejected() -> None:
    with pytest.raises(InputError):
        chunk_document("  \n\n ")


def test_unsplittable_sentence_is_emitted_whole(caplog: pytest.LogCaptureFixture) -> None:
    config = ChunkingConfig(target_tokens=50, max_tokens=100, min_tokens=20, overlap_tokens=10)
    text = " ".join(["token"] * 200)
    with caplog.at_level(logging.WARNING):
        chunks = chunk_document(text, config)
    assert len(chunks) == 1
    assert chunks[0].content == text
    assert "unsplittable" in caplog.text


def test_headings_become_section_paths() -> None:
    sections = parse_sections(GUIDE)
    assert [section.path for section in sections] == ["Guide", "Guide > Setup", "Guide > Usage"]
    assert sections[1].body.strip().startswith("## Setup")

    config = ChunkingConfig(target_tokens=50, max_tokens=100, min_tokens=0, overlap_tokens=0)
    chunks = chunk_document(GUIDE, config)
    assert [chunk.attributes["section"] for chunk in chunks] == ["Guide", "Guide > Setup", "Guide > Usage"]
    assert chunks[0].content == "# Guide\n\nIntro paragraph."
    assert chunks[0].attributes["content_type"] == ContentType.MIXED.value


def test_small_sections_are_merged() -> None:
    config = ChunkingConfig(target_tokens=50, max_tokens=100, min_tokens=20, overlap_tokens=0)
    chunks = chunk_document(GUIDE, config)
    assert len(chunks) == 1
    assert "Run it." in chunks[0].content


def test_metadata_is_attached() -> None:
    chunks = chunk_document("Revenue reached $4.2B in Q3 2023.")
    assert chunks[0].metadata is not None
    assert chunks[0].metadata.has_financial_data
    without = chunk_document("Revenue reached $4.2B in Q3 2023.", ChunkingConfig(extract_metadata=False))
    assert without[0].metadata is None


def test_detect_content_type() -> None:
    assert detect_content_type("- one\n- two") is ContentType.LIST
    assert detect_content_type("| a | b |\n| 1 | 2 |") is ContentType.TABLE
    assert detect_content_type("```\nprint('x')\n```") is ContentType.CODE
    assert detect_content_type("Plain words here.") is ContentType.PARAGRAPH


def test_adjusted_target_respects_bounds() -> None:
    config = ChunkingConfig()
    assert config.min_tokens <= adjusted_target(PARAGRAPH, config) <= config.target_tokens
    assert adjusted_target(PARAGRAPH, ChunkingConfig(adaptive_size=False)) == config.target_tokens


def test_invalid_budgets_are_rejected() -> None:
    with pytest.raises(ValueError):
        ChunkingConfig(target_tokens=900, max_tokens=800)
    with pytest.raises(ValueError):
        ChunkingConfig(min_tokens=500, target_tokens=600, max_tokens=800)
