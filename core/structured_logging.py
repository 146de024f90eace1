"""Structured logging helpers with watch-session correlation context.

Every record carries the watch session, the entity type being watched and
the mutation batch being processed, so a single log line can be traced back
to the watcher and the DOM change that produced it.
"""

from __future__ import annotations

import contextvars
import logging
import uuid
from contextlib import contextmanager
from typing import Iterator

_SESSION_ID_VAR: contextvars.ContextVar[str] = contextvars.ContextVar(
    "session_id", default="-"
)
_ENTITY_VAR: contextvars.ContextVar[str] = contextvars.ContextVar(
    "entity", default="-"
)
_BATCH_VAR: contextvars.ContextVar[str] = contextvars.ContextVar(
    "batch", default="-"
)

WATCH_LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | session_id=%(session_id)s | "
    "entity=%(entity)s | batch=%(batch)s | %(name)s | %(message)s"
)


class _WatchContextFilter(logging.Filter):
    """Inject session, entity and batch fields into all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = _SESSION_ID_VAR.get("-")
        record.entity = _ENTITY_VAR.get("-")
        record.batch = _BATCH_VAR.get("-")
        return True


def _ensure_filter_on_root_handlers() -> None:
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        has_filter = any(isinstance(f, _WatchContextFilter) for f in handler.filters)
        if not has_filter:
            handler.addFilter(_WatchContextFilter())


def configure_structured_logging(level: int = logging.INFO) -> None:
    """Configure root logging format with session/entity/batch context."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(level=level, format=WATCH_LOG_FORMAT)
    else:
        root_logger.setLevel(level)
        formatter = logging.Formatter(WATCH_LOG_FORMAT)
        for handler in root_logger.handlers:
            handler.setFormatter(formatter)
    _ensure_filter_on_root_handlers()


def set_session_id(session_id: str | None = None) -> str:
    """Set or generate the watch session correlation ID."""
    value = session_id or str(uuid.uuid4())
    _SESSION_ID_VAR.set(value)
    return value


def get_session_id() -> str:
    """Get current watch session correlation ID."""
    return _SESSION_ID_VAR.get("-")


def get_entity() -> str:
    """Get the entity type currently being processed."""
    return _ENTITY_VAR.get("-")


def get_batch() -> str:
    """Get the mutation batch currently being processed, or ``-``."""
    return _BATCH_VAR.get("-")


@contextmanager
def entity_scope(entity: str) -> Iterator[None]:
    """Temporarily set entity context for emitted logs."""
    token = _ENTITY_VAR.set(entity)
    try:
        yield
    finally:
        _ENTITY_VAR.reset(token)


@contextmanager
def batch_scope(index: int) -> Iterator[None]:
    """Tag logs emitted while a watcher handles mutation batch ``index``."""
    token = _BATCH_VAR.set(str(index))
    try:
        yield
    finally:
        _BATCH_VAR.reset(token)
