"""Configuration subsystem for kmscert.

Public API::

    from kmscert.config import get_config, KmscertConfig

    # At startup (CLI only):
    KmscertConfig(config_file="config.yaml")

    # Everywhere else:
    cfg = get_config()
    years = cfg.settings.certificate.default_validity_years   # typed access
    custom = cfg.get("custody.options.region")                # dynamic dot-path
"""

from kmscert.config.kmscert_config import (
    ConfigValidationError,
    KmscertConfig,
    get_config,
)
from kmscert.config.settings import (
    AuditLogSettings,
    CertificateSettings,
    CustodySettings,
    HttpCustodySettings,
    KmscertSettings,
    LocalCustodySettings,
    LoggingSettings,
)

__all__ = [
    "AuditLogSettings",
    "CertificateSettings",
    "ConfigValidationError",
    "CustodySettings",
    "HttpCustodySettings",
    "KmscertConfig",
    "KmscertSettings",
    "LocalCustodySettings",
    "LoggingSettings",
    "get_config",
]
