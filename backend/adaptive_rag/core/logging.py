"""Structured logging for retrieval and ingestion."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, MutableMapping

import orjson

CONTEXT_PREFIX = "ctx_"

_DEFAULT_LEVEL = os.environ.get("ARAG_LOG_LEVEL", "INFO")


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key[len(CONTEXT_PREFIX) :]: value
        for key, value in record.__dict__.items()
        if key.startswith(CONTEXT_PREFIX)
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``ctx_*`` extras are grouped under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = _context(record)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


class PlainFormatter(logging.Formatter):
    """Human-readable lines with ``key=value`` context appended."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        return line + " " + " ".join(f"{key}={value}" for key, value in context.items())


class ContextAdapter(logging.LoggerAdapter):
    """Attach fixed context (e.g. the query being served) to every record."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = {f"{CONTEXT_PREFIX}{key}": value for key, value in self.extra.items()}
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def bind(logger: logging.Logger, **context: Any) -> ContextAdapter:
    return ContextAdapter(logger, context)


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = True) -> None:
    """Route all records to stderr so command output on stdout stays machine-readable."""
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if use_json else PlainFormatter())
    root.handlers = [handler]


def get_logger(name: str = "adaptive_rag") -> logging.Logger:
    """Return a logger, configuring the root handler on first use."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "PlainFormatter", "ContextAdapter", "bind", "configure_logging", "get_logger"]
