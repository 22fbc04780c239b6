"""Tests for structured logging (core/logging.py)."""

from __future__ import annotations

import json
import logging

import pytest

from medivault.core.logging import (
    JSONFormatter,
    StandardFormatter,
    configure_logging,
    correlation_context,
    get_correlation_id,
    mask_token,
)


def _record(msg: str = "hello", level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord("medivault.test", level, __file__, 10, msg, None, None)


class TestMaskToken:
    def test_prefix_only(self):
        assert mask_token("AbCdEfGhIjKlMnOp") == "AbCdEf..."

    def test_short(self):
        assert mask_token("abc") == "***"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty(self, value):
        assert mask_token(value) == "<none>"


class TestCorrelationContext:
    def test_scoped(self):
        assert get_correlation_id() is None
        with correlation_context("req-1") as cid:
            assert cid == "req-1"
            assert get_correlation_id() == "req-1"
        assert get_correlation_id() is None

    def test_generated(self):
        with correlation_context() as cid:
            assert len(cid) == 36


class TestJSONFormatter:
    def test_fields(self):
        data = json.loads(JSONFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "medivault.test"
        assert data["message"] == "hello"
        assert "source" not in data

    def test_warning_has_source_and_correlation(self):
        with correlation_context("req-9"):
            data = json.loads(JSONFormatter().format(_record(level=logging.WARNING)))
        assert data["correlation_id"] == "req-9"
        assert data["source"]["line"] == 10


class TestStandardFormatter:
    def test_prefixes_correlation_id(self):
        formatter = StandardFormatter(use_colors=False)
        with correlation_context("abcdef0123456789"):
            line = formatter.format(_record())
        assert "[abcdef01] hello" in line

    def test_does_not_mutate_record(self):
        record = _record()
        with correlation_context("abcdef0123456789"):
            StandardFormatter(use_colors=False).format(record)
        assert record.msg == "hello"


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_level_and_format(self, clean_env):
        configure_logging(level="DEBUG", json_format=True)
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_format_from_env(self, clean_env):
        clean_env.setenv("MEDIVAULT_LOG_FORMAT", "text")
        configure_logging(level="INFO")
        assert isinstance(logging.getLogger().handlers[0].formatter, StandardFormatter)

    def test_log_file(self, clean_env, tmp_path):
        log_file = tmp_path / "medivault.log"
        configure_logging(level="INFO", json_format=False, log_file=str(log_file))
        handlers = logging.getLogger().handlers
        assert len(handlers) == 2
        assert isinstance(handlers[1].formatter, JSONFormatter)
        handlers[1].close()
