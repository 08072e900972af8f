"""Structured logging configuration for kmscert.

Provides JSON and text formatters, an issuance-context filter that
stamps the current run id and key id onto every log record, and a
one-call ``configure_logging`` function driven by config settings.
"""

from __future__ import annotations

import contextlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from kmscert.config.settings import AuditLogSettings, LoggingSettings

# Context attributes stamped by IssuanceContextFilter, in output order
_CONTEXT_ATTRS = ("run_id", "key_id")

# Everything a bare LogRecord carries; any other attribute is an extra
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.NOTSET, "", 0, "", (), None).__dict__,
) | {"message", "asctime", "taskName", *_CONTEXT_ATTRS}

_issuance: ContextVar[dict[str, str] | None] = ContextVar("kmscert_issuance", default=None)


@contextlib.contextmanager
def issuance_context(*, run_id: str, key_id: str) -> Iterator[None]:
    """Bind *run_id* and *key_id* to every record logged inside the block."""
    token = _issuance.set({"run_id": run_id, "key_id": key_id})
    try:
        yield
    finally:
        _issuance.reset(token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """One JSON object per line.

    Carries timestamp, level, logger and message, then the issuance
    context, then any caller-supplied ``extra`` attributes.  Values that
    JSON cannot represent are rendered with ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        created = datetime.fromtimestamp(record.created, tz=UTC)

        data: dict = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        for attr in _CONTEXT_ATTRS:
            value = getattr(record, attr, None)
            if value is not None:
                data[attr] = value

        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        for key, value in extras.items():
            data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Console formatter: ``time LEVEL [run] logger: message``."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s [%(run_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class IssuanceContextFilter(logging.Filter):
    """Stamp ``run_id`` and ``key_id`` from :func:`issuance_context`.

    Outside a run the record gets ``run_id="-"`` and ``key_id=None`` so
    formatters can rely on both attributes existing.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        ctx = _issuance.get()
        if ctx is not None:
            record.run_id = ctx["run_id"]  # type: ignore[attr-defined]
            record.key_id = ctx["key_id"]  # type: ignore[attr-defined]
            return True

        if not hasattr(record, "run_id"):
            record.run_id = "-"  # type: ignore[attr-defined]
        if not hasattr(record, "key_id"):
            record.key_id = None  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _audit_file_handler(
    audit: AuditLogSettings,
    ctx_filter: logging.Filter,
) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        audit.file,
        maxBytes=audit.max_file_size_bytes,
        backupCount=audit.backup_count,
    )
    # Audit output is JSON regardless of the console format
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(ctx_filter)
    return handler


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``kmscert`` logger hierarchy from settings.

    Replaces any bootstrap handlers, so calling it again is safe.  The
    ``kmscert.audit`` logger gets a rotating JSON file when
    ``settings.audit.enabled`` and is held at WARNING otherwise.

    Returns the ``kmscert`` logger.
    """
    ctx_filter = IssuanceContextFilter()

    root = logging.getLogger("kmscert")
    root.setLevel(getattr(logging, settings.level.upper(), logging.INFO))
    root.handlers.clear()
    root.propagate = False

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(StructuredFormatter() if settings.format == "json" else TextFormatter())
    console.addFilter(ctx_filter)
    root.addHandler(console)

    audit = logging.getLogger("kmscert.audit")
    audit.handlers.clear()
    if not settings.audit.enabled:
        audit.setLevel(logging.WARNING)
        return root

    audit.setLevel(logging.INFO)
    if settings.audit.file:
        try:
            audit.addHandler(_audit_file_handler(settings.audit, ctx_filter))
        except OSError as exc:
            root.warning("Could not open audit log file %s: %s", settings.audit.file, exc)
    return root
