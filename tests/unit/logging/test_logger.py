# tests/unit/logging/test_logger.py - v2
"""Tests for logging/logger.py - formatters, size parsing and setup."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler

import pytest

from suitegate.logging.context import clear_context, run_context, set_agent_context
from suitegate.logging.logger import (
    ROOT_LOGGER,
    JsonFormatter,
    TextFormatter,
    parse_size,
    setup_logging,
)


def _record(msg: str = "Hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="suitegate.test", level=logging.INFO, pathname="", lineno=0,
        msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Hello"
        assert "timestamp" in parsed
        assert "context" not in parsed

    def test_format_with_context(self):
        set_agent_context("vector_search")
        with run_context("run_1", "retrieval"):
            parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["context"] == {
            "run_id": "run_1", "phase": "retrieval", "agent": "vector_search",
        }

    def test_format_with_data(self):
        parsed = json.loads(JsonFormatter().format(_record(data={"gate_id": "g1"})))
        assert parsed["data"] == {"gate_id": "g1"}


class TestTextFormatter:
    def test_includes_run_and_phase(self):
        with run_context("run_1", "ranking"):
            line = TextFormatter().format(_record("ranked"))
        assert "[run_1]" in line
        assert "(ranking)" in line
        assert line.endswith("- ranked")


class TestParseSize:
    @pytest.mark.parametrize(
        ("size", "expected"),
        [("10MB", 10 * 1024**2), ("512kb", 512 * 1024), ("2048", 2048), ("1 GB", 1024**3)],
    )
    def test_valid(self, size, expected):
        assert parse_size(size) == expected

    def test_invalid(self):
        with pytest.raises(ValueError, match="Invalid size"):
            parse_size("ten megs")


class TestSetupLogging:
    def teardown_method(self):
        logging.getLogger(ROOT_LOGGER).handlers.clear()

    def test_console_only(self):
        root = setup_logging(level="DEBUG", log_format="text")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, TextFormatter)

    def test_rotating_file(self, tmp_path):
        root = setup_logging(log_file=tmp_path / "logs" / "suitegate.log", rotation="1KB", retention=3)
        file_handlers = [h for h in root.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 1024
        assert file_handlers[0].backupCount == 3
        for handler in file_handlers:
            handler.close()

    def test_idempotent(self):
        setup_logging()
        root = setup_logging()
        assert len(root.handlers) == 1
