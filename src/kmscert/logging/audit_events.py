"""Structured audit events for certificate issuance.

All events are logged to the ``kmscert.audit`` logger with a consistent
``event_id`` field for filtering and alerting.  Raw key material and
signature bytes are redacted via
:func:`~kmscert.logging.sanitize.sanitize_for_logs` before emission.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from kmscert.logging.sanitize import sanitize_for_logs

if TYPE_CHECKING:
    from datetime import datetime

    from kmscert.errors import IssuanceError

audit_log = logging.getLogger("kmscert.audit")


def _emit(
    event_id: str,
    message: str,
    *args: Any,  # noqa: ANN401
    severity: str = "INFO",
    **extra: Any,  # noqa: ANN401
) -> None:
    """Emit a structured audit event.

    All *extra* keyword arguments are sanitized before logging.
    """
    data: dict[str, object] = {
        "event_id": event_id,
        "severity": severity,
    }
    data.update(sanitize_for_logs(extra))
    level = getattr(logging, severity.upper(), logging.INFO)
    audit_log.log(level, message, *args, extra=data)


def public_key_fetched(key_id: str, key_size: int) -> None:
    """Log retrieval of a public key from the custody service."""
    _emit(
        "kmscert.audit.public_key_fetched",
        "Fetched RSA-%d public key for %s",
        key_size,
        key_id,
        key_size=key_size,
    )


def digest_signed(key_id: str, digest: bytes, signature_length: int) -> None:
    """Log a completed remote signing operation."""
    _emit(
        "kmscert.audit.digest_signed",
        "Custody key %s signed digest %s",
        key_id,
        digest.hex(),
        digest_sha256=digest.hex(),
        signature_length=signature_length,
    )


def certificate_issued(
    *,
    key_id: str,
    serial: str,
    fingerprint: str,
    subject: str,
    not_after: datetime,
) -> None:
    """Log issuance of a self-signed certificate."""
    _emit(
        "kmscert.audit.certificate_issued",
        "Certificate issued: serial=%s subject=%s",
        serial,
        subject,
        key_id=key_id,
        serial=serial,
        fingerprint=fingerprint,
        subject=subject,
        not_after=not_after.isoformat(),
    )


def issuance_failed(key_id: str, error: IssuanceError) -> None:
    """Log a failed issuance run with its stage and error kind."""
    _emit(
        "kmscert.audit.issuance_failed",
        "Issuance for %s failed at stage %s: %s",
        key_id,
        error.stage,
        error.detail,
        severity="WARNING",
        stage=error.stage,
        error=type(error).__name__,
        retryable=error.retryable,
        field=getattr(error, "field", None),
    )
