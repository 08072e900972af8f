"""Shared CLI helpers: exit codes, error reporting and file output."""

from __future__ import annotations

import contextlib
import os
import sys
import tempfile
from typing import TYPE_CHECKING

from kmscert.errors import CustodyBackendError

if TYPE_CHECKING:
    from pathlib import Path

    from kmscert.errors import IssuanceError

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_ISSUANCE_FAILED = 2
EXIT_RETRYABLE = 3


def print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"error: {message}", file=sys.stderr)


def report_failure(exc: IssuanceError) -> int:
    """Print *exc* with its stage (and field) and return the exit code."""
    where = exc.stage
    field = getattr(exc, "field", None)
    if field:
        where = f"{where}/{field}"
    hint = " (retry with a new run)" if exc.retryable else ""
    print_error(f"[{where}] {type(exc).__name__}: {exc.detail}{hint}")
    return exit_code_for(exc)


def exit_code_for(exc: IssuanceError) -> int:
    if isinstance(exc, CustodyBackendError):
        return EXIT_CONFIG
    if exc.retryable:
        return EXIT_RETRYABLE
    return EXIT_ISSUANCE_FAILED


def write_atomic(path: Path, data: bytes) -> None:
    """Write *data* to *path* via a temp file and rename.

    Either the complete file appears at *path* or nothing does.
    """
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=".tmp.", dir=path.parent)
    try:
        with os.fdopen(tmp_fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_path)
