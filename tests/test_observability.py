"""
Tests for structured logging and stage probes.
"""

import logging

import pytest
from prometheus_client import REGISTRY

from ragsmith.observability.logging import (
    StructuredFormatter,
    ensure_trace_id,
    get_logger,
    new_trace_id,
    set_trace_id,
)
from ragsmith.observability.probe import probe


def format_record(logger_name: str, msg: str, **fields) -> str:
    record = logging.LogRecord(logger_name, logging.INFO, __file__, 1, msg, None, None)
    for key, value in fields.items():
        setattr(record, key, value)
    return StructuredFormatter().format(record)


class TestStructuredFormatter:
    """Single-line key=value output."""

    def test_line_shape(self):
        set_trace_id("abc123")
        line = format_record("ragsmith.rag.engine", "Answered question", op="engine.ask", ms=12.34, selected=3)
        assert "level=INFO" in line
        assert "trace=abc123" in line
        assert "mod=engine" in line
        assert "op=engine.ask" in line
        assert "ms=12.3" in line
        assert 'msg="Answered question"' in line
        assert line.endswith("selected=3")

    def test_new_trace_id(self):
        first = new_trace_id()
        second = new_trace_id()
        assert len(first) == 16 and first != second

    def test_multi_word_values_are_quoted(self):
        line = format_record("ragsmith.rag.indexer", "Delete failed", error="StoreError: no delete", stale=2)
        assert 'error="StoreError: no delete"' in line
        assert line.endswith("stale=2")

    def test_ensure_trace_id_keeps_bound_id(self):
        set_trace_id("bound01")
        assert ensure_trace_id() == "bound01"


class TestProbe:
    """Timing, metrics and error propagation."""

    def _count(self, op, ok):
        return REGISTRY.get_sample_value("ragsmith_operations_total", {"op": op, "ok": ok}) or 0.0

    def test_success_counted(self, caplog):
        before = self._count("test.success", "true")
        with caplog.at_level(logging.INFO, logger="ragsmith.probe"), probe("test.success", stage="x"):
            pass
        assert self._count("test.success", "true") == before + 1
        assert any("op=test.success ok=true" in r.getMessage() for r in caplog.records)

    def test_failure_counted_and_reraised(self):
        before = self._count("test.failure", "false")
        with pytest.raises(KeyError), probe("test.failure"):
            raise KeyError("boom")
        assert self._count("test.failure", "false") == before + 1

    def test_logger_accepts_fields(self, caplog):
        logger = get_logger("ragsmith.tests")
        with caplog.at_level(logging.WARNING, logger="ragsmith.tests"):
            logger.warning("Cache write failed", error="OSError")
        assert caplog.records[-1].error == "OSError"
