"""Structured logging for Feed Courier.

Every module obtains its logger through :func:`setup_logger`, which returns an
adapter carrying the module's ``component`` plus per-call extras such as the
connection id and pass status. The root handler renders those fields as
``key=value`` columns so one sync pass can be followed across modules.
"""

from __future__ import annotations

import logging
import sys
from threading import Lock
from typing import Any, Final, TextIO

from .config import get_settings

CONTEXT_FIELDS: Final[tuple[str, ...]] = (
    "component",
    "connection_id",
    "mode",
    "status",
    "duration_ms",
)

LOG_FORMAT: Final[str] = (
    "%(asctime)s | %(levelname)s | %(name)s | "
    + " | ".join(f"{field}=%({field})s" for field in CONTEXT_FIELDS)
    + " | %(message)s"
)

_PLACEHOLDER: Final[str] = "-"

_configured_level: int | None = None
_CONFIG_LOCK: Final = Lock()


class ContextFieldFormatter(logging.Formatter):
    """Fills context columns missing from a record with a placeholder."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        for field in CONTEXT_FIELDS:
            record.__dict__.setdefault(field, _PLACEHOLDER)
        return super().format(record)


def _resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName((level or get_settings().log_level).upper())
    return value if isinstance(value, int) else logging.INFO


def configure_logging(
    level: str | int | None = None,
    *,
    stream: TextIO | None = None,
    force: bool = False,
) -> int:
    """Install the context formatter on the root logger and return the active level.

    The first call wins unless ``force`` is set. Handlers installed by a host
    (pytest, uvicorn) are kept and only receive the formatter; otherwise one
    stderr handler is added.
    """

    global _configured_level
    with _CONFIG_LOCK:
        if _configured_level is not None and not force:
            return _configured_level

        resolved = _resolve_level(level)
        root_logger = logging.getLogger()
        root_logger.setLevel(resolved)
        formatter = ContextFieldFormatter(LOG_FORMAT)

        if root_logger.handlers and stream is None:
            for handler in root_logger.handlers:
                handler.setFormatter(formatter)
        else:
            handler = logging.StreamHandler(stream or sys.stderr)
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)

        _configured_level = resolved
        return resolved


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Merges the adapter's default context with the ``extra`` of each call."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:  # type: ignore[override]
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def setup_logger(name: str, *, context: dict[str, Any] | None = None) -> StructuredLoggerAdapter:
    """Return an adapter for ``name`` whose records always carry ``context``."""

    configure_logging()
    return StructuredLoggerAdapter(logging.getLogger(name), dict(context or {}))


_PASS_LEVELS: Final[dict[str, int]] = {
    "success": logging.INFO,
    "partial": logging.WARNING,
    "discarded": logging.WARNING,
}


def log_sync_pass(
    logger: logging.Logger | logging.LoggerAdapter,
    connection_id: str,
    mode: str,
    duration_ms: int,
    status: str,
    **details: Any,
) -> None:
    """
    Log the outcome of one sync or backfill pass.

    Args:
        logger: Logger or adapter to write to
        connection_id: Connection the pass ran for
        mode: ``incremental``, ``backfill`` or ``upload``
        duration_ms: Wall-clock duration of the pass in milliseconds
        status: ``success``, ``partial``, ``discarded`` or ``error``
        **details: Counters appended to the message as ``key=value`` pairs
    """
    message = f"Sync pass {status}"
    if details:
        message += " | " + " ".join(f"{key}={value}" for key, value in sorted(details.items()))

    logger.log(
        _PASS_LEVELS.get(status, logging.ERROR),
        message,
        extra={
            "connection_id": connection_id,
            "mode": mode,
            "duration_ms": duration_ms,
            "status": status,
        },
    )
