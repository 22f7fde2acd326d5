"""
Structured JSON logging for the market kernel.

Every record is one JSON line: an envelope (ts, level, logger, message),
the ids bound in ``LogContext`` for the current unit of work, the record's
``extra`` fields and, for failures, the exception type, code and
structured attributes.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "order_id",
    "request_id",
    "offer_id",
)

_context: ContextVar[Mapping[str, str]] = ContextVar("market_log_context", default={})


def _known(fields: Mapping[str, Any]) -> dict[str, str]:
    return {k: str(v) for k, v in fields.items() if k in CONTEXT_FIELDS and v is not None}


class LogContext:
    """
    Ids attached to every log line of the current thread or task.

    The marketplace facade binds a correlation id per unit of work; the
    services bind the order, request or offer they are working on.  Unknown
    names and None values are ignored.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        _context.set({**_context.get(), **_known(fields)})

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set({})

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Add fields for the duration of the block, then restore the previous set."""
        token = _context.set({**_context.get(), **_known(fields)})
        try:
            yield
        finally:
            _context.reset(token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # MarketKernelError subclasses keep their context as public attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_jsonable)


ROOT_LOGGER = "market_kernel"


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``market_kernel`` namespace, e.g. ``services.order``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_installed: logging.Handler | None = None
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``market_kernel`` logger.

    Only the first call has any effect; later calls (the engine calls this
    on every initialization) leave the existing handler in place.
    """
    global _installed
    with _configure_lock:
        if _installed is not None:
            return
        _installed = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        _installed.setFormatter(StructuredFormatter())

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(_installed)


def reset_logging() -> None:
    """Remove the installed handler so the next configure_logging() applies.  Tests only."""
    global _installed
    with _configure_lock:
        installed, _installed = _installed, None
    root = logging.getLogger(ROOT_LOGGER)
    if installed is not None:
        root.removeHandler(installed)
    root.setLevel(logging.WARNING)
