"""Key custody subcommands."""

from __future__ import annotations

import hashlib
import json
import logging
import sys

from kmscert.cli.output import EXIT_CONFIG, EXIT_OK, report_failure
from kmscert.errors import IssuanceError

log = logging.getLogger(__name__)

# Subject of the throwaway certificate issued by ``custody test-sign``
_TEST_SIGN_SUBJECT = {
    "country": "ZZ",
    "state": "Test",
    "organization": "kmscert",
    "common_name": "kmscert custody test-sign",
}


def load_configured_custody(config):
    """Load the configured backend and run its startup check."""
    from kmscert.custody.registry import load_custody_backend  # noqa: PLC0415

    custody = load_custody_backend(
        config.settings.custody,
        allowed_key_sizes=config.settings.certificate.allowed_key_sizes,
    )
    custody.startup_check()
    return custody


def run_custody(config, args) -> int:
    """Handle custody subcommands."""
    if args.custody_command == "check":
        return _custody_check(config, args.key_id)
    if args.custody_command == "test-sign":
        return _custody_test_sign(config, args.key_id)
    print("usage: kmscert -c PATH custody {check,test-sign} --key-id ID", file=sys.stderr)
    return EXIT_CONFIG


def _custody_check(config, key_id: str) -> int:
    """Fetch the public key for *key_id* and describe it."""
    try:
        custody = load_configured_custody(config)
        material = custody.get_public_key(key_id)
    except IssuanceError as exc:
        return report_failure(exc)

    result = {
        "key_id": key_id,
        "backend": config.settings.custody.backend,
        "key_size": material.key_size,
        "public_exponent": material.exponent,
        "spki_sha256": hashlib.sha256(material.to_spki_der()).hexdigest(),
    }
    print(json.dumps(result, indent=2))
    return EXIT_OK


def _custody_test_sign(config, key_id: str) -> int:
    """Issue a one-year throwaway certificate to verify the signer end to end."""
    from kmscert.cert import issue_certificate  # noqa: PLC0415
    from kmscert.models import DistinguishedName, IssuanceRequest  # noqa: PLC0415

    try:
        custody = load_configured_custody(config)
        request = IssuanceRequest(
            subject=DistinguishedName(**_TEST_SIGN_SUBJECT),
            years=1,
            key_id=key_id,
        )
        issued = issue_certificate(request, custody, settings=config.settings.certificate)
    except IssuanceError as exc:
        return report_failure(exc)

    log.info("custody test-sign succeeded for key %s", key_id)
    print(
        json.dumps(
            {
                "key_id": key_id,
                "status": "ok",
                "serial": issued.serial_hex,
                "fingerprint": issued.fingerprint,
            },
            indent=2,
        ),
    )
    return EXIT_OK
