"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the application actually reads.

Access pattern::

    from kmscert.config import get_config

    cert = get_config().settings.certificate
    print(cert.default_validity_years)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Key custody
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HttpCustodySettings:
    """HTTPS key custody service settings (URL, auth, TLS)."""

    base_url: str
    auth_header: str
    auth_value: str
    ca_cert_path: str | None
    client_cert_path: str | None
    client_key_path: str | None
    timeout_seconds: int
    max_retries: int
    retry_delay_seconds: float


@dataclass(frozen=True)
class LocalCustodySettings:
    """On-disk PEM key custody settings."""

    key_directory: str


@dataclass(frozen=True)
class CustodySettings:
    """Key custody backend selection and per-backend settings."""

    backend: str
    http: HttpCustodySettings
    local: LocalCustodySettings
    options: dict[str, Any]


def _build_custody(data: dict | None) -> CustodySettings:
    d = data or {}
    http_d = d.get("http") or {}
    local_d = d.get("local") or {}
    return CustodySettings(
        backend=d.get("backend", "http"),
        http=HttpCustodySettings(
            base_url=http_d.get("base_url", ""),
            auth_header=http_d.get("auth_header", "Authorization"),
            auth_value=http_d.get("auth_value", ""),
            ca_cert_path=http_d.get("ca_cert_path"),
            client_cert_path=http_d.get("client_cert_path"),
            client_key_path=http_d.get("client_key_path"),
            timeout_seconds=http_d.get("timeout_seconds", 30),
            max_retries=http_d.get("max_retries", 2),
            retry_delay_seconds=http_d.get("retry_delay_seconds", 1.0),
        ),
        local=LocalCustodySettings(
            key_directory=local_d.get("key_directory", ""),
        ),
        options=dict(d.get("options") or {}),
    )


# ---------------------------------------------------------------------------
# Certificate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertificateSettings:
    """Certificate profile knobs (validity bounds, serial width, key sizes)."""

    default_validity_years: int
    max_validity_years: int
    serial_bits: int
    allowed_key_sizes: tuple[int, ...]
    verify_signature: bool


def build_certificate_settings(data: dict | None) -> CertificateSettings:
    d = data or {}
    return CertificateSettings(
        default_validity_years=d.get("default_validity_years", 10),
        max_validity_years=d.get("max_validity_years", 30),
        serial_bits=d.get("serial_bits", 159),
        allowed_key_sizes=tuple(d.get("allowed_key_sizes", (2048, 3072, 4096))),
        verify_signature=d.get("verify_signature", True),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogSettings:
    """Audit log output settings (file, rotation)."""

    enabled: bool
    file: str | None
    max_file_size_bytes: int
    backup_count: int


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format, audit)."""

    level: str
    format: str
    audit: AuditLogSettings


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    a = d.get("audit") or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
        audit=AuditLogSettings(
            enabled=a.get("enabled", False),
            file=a.get("file"),
            max_file_size_bytes=a.get("max_file_size_bytes", 10485760),
            backup_count=a.get("backup_count", 5),
        ),
    )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KmscertSettings:
    """Top-level settings tree."""

    custody: CustodySettings
    certificate: CertificateSettings
    logging: LoggingSettings


def build_settings(data: dict | None) -> KmscertSettings:
    """Build the full typed settings tree from a raw config dict."""
    d = data or {}
    return KmscertSettings(
        custody=_build_custody(d.get("custody")),
        certificate=build_certificate_settings(d.get("certificate")),
        logging=_build_logging(d.get("logging")),
    )
