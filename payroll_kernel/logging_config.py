"""
Structured JSON logging for the payroll core.

Every record under the ``payroll_kernel`` logger is written as one JSON
line.  A line carries:

- ``ts``, ``level``, ``logger`` and ``message`` (the event name, e.g.
  ``rollover_finished``).
- The payroll context bound by the running operation: ``correlation_id``,
  ``run_id``, ``employee_id`` and ``period_key``.
- Whatever the call site passed in ``extra``.
- For a ``PayrollKernelError``, its ``code`` and structured attributes as
  ``exc_<name>``.

Money stays exact: Decimal values are written as strings.
"""

from __future__ import annotations

__all__ = [
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
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from payroll_kernel.exceptions import PayrollKernelError

LOGGER_ROOT = "payroll_kernel"

_HANDLER_NAME = "payroll_kernel.json"


# ---------------------------------------------------------------------------
# Operation context
# ---------------------------------------------------------------------------

_context: ContextVar[Mapping[str, str]] = ContextVar("payroll_log_context", default={})


class LogContext:
    """
    Payroll fields attached to every record logged in the current context.

    Only the names in ``FIELDS`` are accepted.  Values live in a single
    context variable, so threads and asyncio tasks each see their own.
    """

    FIELDS = ("correlation_id", "run_id", "employee_id", "period_key")

    @classmethod
    def _merged(cls, fields: dict[str, str | None]) -> dict[str, str]:
        unknown = set(fields) - set(cls.FIELDS)
        if unknown:
            raise TypeError(f"unknown log context field(s): {', '.join(sorted(unknown))}")
        merged = dict(_context.get())
        merged.update({k: v for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Update the given fields; None leaves a field as it is."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[None]:
        """Set fields for the duration of a ``with`` block."""
        token = _context.set(cls._merged(fields))
        try:
            yield
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "taskName",
}


def _json_default(value: Any) -> Any:
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(v if isinstance(v, str) else _json_default(v) for v in value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    if isinstance(exc, PayrollKernelError):
        fields["exc_code"] = exc.code
        fields.update(
            (f"exc_{name}", val) for name, val in vars(exc).items() if not name.startswith("_")
        )
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        for key, val in vars(record).items():
            if key not in _RESERVED:
                payload.setdefault(key, val)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger ``payroll_kernel.<name>``."""
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


_setup_lock = threading.Lock()


def configure_logging(
    *, level: int = logging.INFO, handler: logging.Handler | None = None
) -> None:
    """
    Attach the JSON handler to the ``payroll_kernel`` logger.

    Only the first call takes effect until ``reset_logging()``; the host's
    own root logging is left alone.
    """
    root = logging.getLogger(LOGGER_ROOT)
    with _setup_lock:
        if any(h.get_name() == _HANDLER_NAME for h in root.handlers):
            return
        target = handler if handler is not None else logging.StreamHandler(sys.stderr)
        target.set_name(_HANDLER_NAME)
        target.setFormatter(StructuredFormatter())
        root.addHandler(target)
        root.setLevel(level)
        root.propagate = False


def reset_logging() -> None:
    """Remove the JSON handler again (tests)."""
    root = logging.getLogger(LOGGER_ROOT)
    with _setup_lock:
        for h in list(root.handlers):
            if h.get_name() == _HANDLER_NAME:
                root.removeHandler(h)
        root.setLevel(logging.WARNING)
