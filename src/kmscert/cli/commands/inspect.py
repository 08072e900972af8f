"""Inspect subcommand: describe a certificate file.

Usage::

    kmscert -c config.yaml inspect robot.pem
    kmscert -c config.yaml inspect robot.der
"""

from __future__ import annotations

import json
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes

from kmscert.cli.output import EXIT_CONFIG, EXIT_ISSUANCE_FAILED, EXIT_OK, print_error

_PEM_MARKER = b"-----BEGIN CERTIFICATE-----"


def run_inspect(config, args) -> int:  # noqa: ARG001
    """Print the certificate at ``args.path`` as JSON."""
    path = Path(args.path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        print_error(f"cannot read {path}: {exc}")
        return EXIT_CONFIG

    try:
        cert = load_certificate(data)
    except ValueError as exc:
        print_error(f"{path} is not a PEM or DER certificate: {exc}")
        return EXIT_ISSUANCE_FAILED

    print(json.dumps(describe_certificate(cert), indent=2))
    return EXIT_OK


def load_certificate(data: bytes) -> x509.Certificate:
    if _PEM_MARKER in data:
        return x509.load_pem_x509_certificate(data)
    return x509.load_der_x509_certificate(data)


def describe_certificate(cert: x509.Certificate) -> dict:
    """Summarise *cert* in a JSON-serialisable dict."""
    extensions = []
    for ext in cert.extensions:
        entry = {
            "oid": ext.oid.dotted_string,
            "name": ext.oid._name,  # noqa: SLF001
            "critical": ext.critical,
        }
        if isinstance(ext.value, x509.IssuerAlternativeName):
            entry["emails"] = ext.value.get_values_for_type(x509.RFC822Name)
        elif isinstance(ext.value, x509.ExtendedKeyUsage):
            entry["usages"] = [oid.dotted_string for oid in ext.value]
        extensions.append(entry)

    self_signed = cert.issuer == cert.subject
    signature_valid = None
    if self_signed:
        try:
            cert.verify_directly_issued_by(cert)
            signature_valid = True
        except (ValueError, TypeError, InvalidSignature):
            signature_valid = False

    return {
        "subject": cert.subject.rfc4514_string(),
        "issuer": cert.issuer.rfc4514_string(),
        "version": cert.version.name,
        "serial": format(cert.serial_number, "x"),
        "not_before": cert.not_valid_before_utc.isoformat(),
        "not_after": cert.not_valid_after_utc.isoformat(),
        "signature_algorithm": cert.signature_algorithm_oid.dotted_string,
        "key_size": getattr(cert.public_key(), "key_size", None),
        "extensions": extensions,
        "self_signed": self_signed,
        "self_signature_valid": signature_valid,
        "sha256": cert.fingerprint(hashes.SHA256()).hex(),
    }
