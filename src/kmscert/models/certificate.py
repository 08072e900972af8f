"""Issuance request and result entities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from kmscert.models.identity import DistinguishedName


@dataclass(frozen=True)
class IssuanceRequest:
    subject: DistinguishedName
    years: int
    key_id: str
    email: str | None = None


@dataclass(frozen=True)
class IssuedCertificate:
    """Result of a successful issuance run.

    Attributes
    ----------
    der:
        DER encoding of the signed certificate.
    pem:
        PEM rendering of :attr:`der`.
    serial_number:
        Serial number embedded in the certificate.
    fingerprint:
        SHA-256 hex digest of :attr:`der`.
    not_before:
        Validity start time.
    not_after:
        Validity end time.
    key_id:
        Identifier of the custody key that signed the certificate.

    """

    der: bytes
    pem: str
    serial_number: int
    fingerprint: str
    not_before: datetime
    not_after: datetime
    key_id: str

    @property
    def serial_hex(self) -> str:
        return format(self.serial_number, "x")
