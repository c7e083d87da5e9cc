"""Logging for the working-memory service.

Records are stamped with the cache scope (``agent:user``), the session and
entry ids while a store is in flight, and the active OpenTelemetry trace id.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from opentelemetry import trace

_CORRELATION_FIELDS = ("scope_id", "session_id", "entry_id")

_TEXT_FORMAT = " ".join(
    [
        "%(asctime)s %(levelname)s %(name)s",
        *(f"{field}=%({field})s" for field in _CORRELATION_FIELDS),
        "trace_id=%(otel_trace_id)s",
        "%(message)s",
    ]
)


@dataclass(frozen=True, slots=True)
class CorrelationContext:
    scope_id: str | None = None
    session_id: str | None = None
    entry_id: str | None = None

    def merged(self, **overrides: str | None) -> CorrelationContext:
        """Copy with every non-``None`` override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


_current: ContextVar[CorrelationContext] = ContextVar(
    "xerus_log_correlation", default=CorrelationContext()
)


def get_correlation_context() -> CorrelationContext:
    return _current.get()


def _trace_id() -> str:
    span_context = trace.get_current_span().get_span_context()
    return format(span_context.trace_id, "032x") if span_context.trace_id else ""


class CorrelationFilter(logging.Filter):
    """Copy the bound correlation ids and the trace id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _current.get()
        for field in _CORRELATION_FIELDS:
            setattr(record, field, getattr(context, field))
        record.otel_trace_id = _trace_id()
        return True


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object | None] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "trace_id": getattr(record, "otel_trace_id", None) or None,
        }
        payload.update({field: getattr(record, field, None) for field in _CORRELATION_FIELDS})
        if record.exc_info is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def setup_logging(level: int | str = logging.INFO, json_output: bool = False) -> None:
    """Replace the root handlers with one stdout handler carrying correlation fields."""
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_output else logging.Formatter(_TEXT_FORMAT))
    handler.addFilter(CorrelationFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)


@contextmanager
def correlation_scope(
    *,
    scope_id: str | None = None,
    session_id: str | None = None,
    entry_id: str | None = None,
) -> Iterator[CorrelationContext]:
    """Bind correlation ids for the enclosed block; ids left unset keep their outer value."""
    token = _current.set(
        _current.get().merged(scope_id=scope_id, session_id=session_id, entry_id=entry_id)
    )
    try:
        yield _current.get()
    finally:
        _current.reset(token)


__all__ = [
    "CorrelationContext",
    "CorrelationFilter",
    "correlation_scope",
    "get_correlation_context",
    "setup_logging",
]
