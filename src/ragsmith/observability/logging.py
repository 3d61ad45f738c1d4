"""
Structured logging for ragsmith.

Every line is ``t= level= trace= mod= op= [ms=] msg=`` followed by the keyword
fields passed to the logger. A trace id bound in a ``ContextVar`` ties together
the lines of one ``ask`` or one index run, including lines logged from the
worker threads the store uses (``asyncio.to_thread`` copies the context).
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, TextIO

trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)

_loggers: dict[str, "StructuredLogger"] = {}

# Attributes every LogRecord carries; anything else on a record is a field.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {
    "message",
    "asctime",
}
_HEADER_FIELDS = frozenset({"trace_id", "op", "ms"})

_QUIET_LOGGERS = ("httpx", "httpcore", "chromadb", "opentelemetry")


def _format_value(value: Any) -> str:
    text = str(value)
    if not text or any(c.isspace() for c in text) or "=" in text or '"' in text:
        return json.dumps(text, ensure_ascii=False)
    return text


class StructuredFormatter(logging.Formatter):
    """Single-line key=value formatter."""

    def format(self, record: logging.LogRecord) -> str:
        trace_id = trace_id_ctx.get() or getattr(record, "trace_id", None) or "-"
        mod = record.name.rsplit(".", 1)[-1]
        op = getattr(record, "op", None) or record.funcName or "-"

        header = (
            f"t={datetime.now(UTC).isoformat()} level={record.levelname} "
            f"trace={trace_id} mod={mod} op={op}"
        )
        duration = getattr(record, "ms", None)
        if duration is not None:
            header += f" ms={duration:.1f}"

        fields = "".join(
            f" {key}={_format_value(value)}"
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and key not in _HEADER_FIELDS
        )
        line = f'{header} msg="{record.getMessage()}"{fields}'
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger:
    """Logger taking structured fields as keyword arguments."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, **fields):
        extra = {k: v for k, v in fields.items() if k not in _RESERVED_ATTRS}
        extra["trace_id"] = trace_id_ctx.get()
        self.logger.log(level, msg, extra=extra)

    def debug(self, msg: str, **fields):
        self._log(logging.DEBUG, msg, **fields)

    def info(self, msg: str, **fields):
        self._log(logging.INFO, msg, **fields)

    def warning(self, msg: str, **fields):
        self._log(logging.WARNING, msg, **fields)

    def error(self, msg: str, **fields):
        self._log(logging.ERROR, msg, **fields)


def get_logger(name: str) -> StructuredLogger:
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Route all logging through one structured handler.

    Logs go to stderr by default so the CLI's JSON output on stdout stays clean.
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def new_trace_id() -> str:
    """Bind a fresh trace id to the current context."""
    trace_id = uuid.uuid4().hex[:16]
    trace_id_ctx.set(trace_id)
    return trace_id


def ensure_trace_id() -> str:
    """Return the bound trace id, binding a new one if there is none."""
    return trace_id_ctx.get() or new_trace_id()


def set_trace_id(trace_id: str) -> None:
    trace_id_ctx.set(trace_id)


def get_trace_id() -> str | None:
    return trace_id_ctx.get()
