"""The fixed X.509v3 extension set carried by every certificate.

In encoding order:

1. basicConstraints, critical, cA=FALSE;
2. keyUsage, critical, digitalSignature + keyEncipherment;
3. extendedKeyUsage, serverAuth + clientAuth;
4. issuerAltName with one rfc822Name, only when an email is supplied.
"""

from __future__ import annotations

from dataclasses import dataclass

from kmscert.asn1.der import (
    encode_bit_string,
    encode_boolean,
    encode_ia5_string,
    encode_implicit,
    encode_octet_string,
    encode_oid,
    encode_sequence,
)
from kmscert.errors import EncodingError

OID_BASIC_CONSTRAINTS = "2.5.29.19"
OID_KEY_USAGE = "2.5.29.15"
OID_EXTENDED_KEY_USAGE = "2.5.29.37"
OID_ISSUER_ALT_NAME = "2.5.29.18"

# ---------------------------------------------------------------------------
# Key usage / EKU mappings
# ---------------------------------------------------------------------------

# Bit positions from RFC 5280 §4.2.1.3
_KEY_USAGE_BITS = {
    "digital_signature": 0,
    "content_commitment": 1,
    "key_encipherment": 2,
    "data_encipherment": 3,
    "key_agreement": 4,
    "key_cert_sign": 5,
    "crl_sign": 6,
    "encipher_only": 7,
    "decipher_only": 8,
}

_EKU_OIDS = {
    "server_auth": "1.3.6.1.5.5.7.3.1",
    "client_auth": "1.3.6.1.5.5.7.3.2",
}

KEY_USAGES = ("digital_signature", "key_encipherment")
EXTENDED_KEY_USAGES = ("server_auth", "client_auth")

# GeneralName ::= CHOICE { ... rfc822Name [1] IA5String ... }
_GENERAL_NAME_RFC822 = 1


@dataclass(frozen=True)
class Extension:
    """One encoded extension: OID, criticality and DER ``extnValue`` content."""

    oid: str
    critical: bool
    value: bytes

    def encode(self) -> bytes:
        """``SEQUENCE { extnID, critical DEFAULT FALSE, extnValue OCTET STRING }``."""
        parts = [encode_oid(self.oid, field="extension")]
        if self.critical:
            parts.append(encode_boolean(True))  # noqa: FBT003
        parts.append(encode_octet_string(self.value, field="extension"))
        return encode_sequence(*parts)


def encode_basic_constraints() -> bytes:
    """End-entity BasicConstraints; cA=FALSE is the DEFAULT so it is omitted."""
    return encode_sequence()


def encode_key_usage(usages: tuple[str, ...]) -> bytes:
    """Encode a KeyUsage named bit list with trailing zero bits trimmed."""
    positions = []
    for name in usages:
        bit = _KEY_USAGE_BITS.get(name)
        if bit is None:
            raise EncodingError(
                "key_usage",
                f"unknown key usage '{name}'; supported: {sorted(_KEY_USAGE_BITS)}",
            )
        positions.append(bit)
    if not positions:
        raise EncodingError("key_usage", "at least one key usage is required")

    highest = max(positions)
    content = bytearray(highest // 8 + 1)
    for bit in positions:
        content[bit // 8] |= 0x80 >> (bit % 8)
    return encode_bit_string(bytes(content), unused_bits=7 - highest % 8, field="key_usage")


def encode_extended_key_usage(usages: tuple[str, ...]) -> bytes:
    """Encode ExtKeyUsageSyntax, a SEQUENCE of KeyPurposeId OIDs."""
    oids = []
    for name in usages:
        oid = _EKU_OIDS.get(name)
        if oid is None:
            raise EncodingError(
                "extended_key_usage",
                f"unknown extended key usage '{name}'; supported: {sorted(_EKU_OIDS)}",
            )
        oids.append(encode_oid(oid, field="extended_key_usage"))
    return encode_sequence(*oids)


def validate_email(email: str) -> str:
    """Return *email* if it can be an rfc822Name, else raise :class:`EncodingError`."""
    local, sep, domain = email.partition("@")
    if not sep or not local or not domain or "@" in domain:
        raise EncodingError("email", f"{email!r} is not a valid email address")
    if any(ch.isspace() for ch in email):
        raise EncodingError("email", f"{email!r} contains whitespace")
    if not email.isascii():
        raise EncodingError("email", f"{email!r} is not 7-bit ASCII")
    return email


def encode_issuer_alt_name(email: str) -> bytes:
    """Encode GeneralNames holding a single rfc822Name."""
    validate_email(email)
    return encode_sequence(
        encode_implicit(
            _GENERAL_NAME_RFC822,
            encode_ia5_string(email, field="email"),
            field="email",
        ),
    )


def build_extensions(email: str | None = None) -> tuple[Extension, ...]:
    """Return the fixed extension set, plus issuerAltName when *email* is given."""
    extensions = [
        Extension(OID_BASIC_CONSTRAINTS, critical=True, value=encode_basic_constraints()),
        Extension(OID_KEY_USAGE, critical=True, value=encode_key_usage(KEY_USAGES)),
        Extension(
            OID_EXTENDED_KEY_USAGE,
            critical=False,
            value=encode_extended_key_usage(EXTENDED_KEY_USAGES),
        ),
    ]
    if email is not None:
        extensions.append(
            Extension(OID_ISSUER_ALT_NAME, critical=False, value=encode_issuer_alt_name(email)),
        )
    return tuple(extensions)
