"""Tests for structured log formatting."""

import logging

import orjson

from adaptive_rag.core.logging import JsonFormatter, PlainFormatter, bind


class _Capture(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def _capture(name: str) -> tuple[logging.Logger, _Capture]:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    handler = _Capture()
    logger.handlers = [handler]
    return logger, handler


def test_bind_attaches_context_to_every_record() -> None:
    logger, handler = _capture("arag.test.bind")
    log = bind(logger, query="revenue", strategy="hybrid")
    log.info("first")
    log.info("second", extra={"ctx_threshold": 0.4})

    payloads = [orjson.loads(JsonFormatter().format(record)) for record in handler.records]
    assert payloads[0]["context"] == {"query": "revenue", "strategy": "hybrid"}
    assert payloads[1]["context"]["threshold"] == 0.4
    assert payloads[1]["message"] == "second"


def test_json_formatter_omits_empty_context() -> None:
    logger, handler = _capture("arag.test.plain")
    logger.warning("no context here")
    payload = orjson.loads(JsonFormatter().format(handler.records[0]))
    assert "context" not in payload
    assert payload["level"] == "WARNING"


def test_plain_formatter_appends_key_values() -> None:
    logger, handler = _capture("arag.test.kv")
    bind(logger, stage="mmr").info("selected %d", 3)
    line = PlainFormatter().format(handler.records[0])
    assert "selected 3" in line
    assert line.endswith("stage=mmr")
