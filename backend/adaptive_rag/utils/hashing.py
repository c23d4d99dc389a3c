"""Content digests used for document identity and duplicate detection."""

from __future__ import annotations

import hashlib

DOCUMENT_ID_PREFIX = "doc_"


def content_digest(text: str) -> str:
    """Hex SHA-256 of the UTF-8 encoded text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def document_id_for(text: str, digest: str | None = None) -> str:
    """Stable identifier derived from document content."""
    return f"{DOCUMENT_ID_PREFIX}{(digest or content_digest(text))[:16]}"


__all__ = ["content_digest", "document_id_for"]
