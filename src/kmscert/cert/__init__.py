"""Self-signed certificate construction for custody-held RSA keys.

Exports the issuance entry point, the single-run state machine and the
TBSCertificate value.
"""

from kmscert.cert.assembler import CertificateIssuance, issue_certificate
from kmscert.cert.public_key import PublicKeyMaterial, parse_public_key
from kmscert.cert.tbs import TBSCertificate

__all__ = [
    "CertificateIssuance",
    "PublicKeyMaterial",
    "TBSCertificate",
    "issue_certificate",
    "parse_public_key",
]
