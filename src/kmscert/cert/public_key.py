"""Public key adapter -- custody export format to SubjectPublicKeyInfo.

Key custody services export RSA public keys in one of a few shapes:

- SubjectPublicKeyInfo DER (``openssl rsa -pubout -outform DER``);
- PEM, either ``PUBLIC KEY`` (SPKI) or ``RSA PUBLIC KEY`` (PKCS#1);
- an RSA JWK, ``{"kty": "RSA", "n": <b64url>, "e": <b64url>}``, as
  returned by cloud key vaults.

All of them are reduced to :class:`PublicKeyMaterial` (modulus and
exponent), validated against the allowed key sizes, and re-encoded into
the exact SPKI structure the certificate embeds.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from kmscert.asn1.der import (
    encode_bit_string,
    encode_integer,
    encode_null,
    encode_oid,
    encode_sequence,
)
from kmscert.errors import KeyMaterialError

log = logging.getLogger(__name__)

OID_RSA_ENCRYPTION = "1.2.840.113549.1.1.1"

DEFAULT_KEY_SIZES = (2048, 3072, 4096)

_MIN_EXPONENT = 3


@dataclass(frozen=True)
class PublicKeyMaterial:
    """RSA public key components as unsigned integers."""

    modulus: int
    exponent: int

    @property
    def byte_length(self) -> int:
        """Modulus length in octets; also the PKCS#1 signature length."""
        return (self.modulus.bit_length() + 7) // 8

    @property
    def key_size(self) -> int:
        """Nominal key size in bits (modulus octets * 8)."""
        return self.byte_length * 8

    def to_spki_der(self) -> bytes:
        """Encode as SubjectPublicKeyInfo DER.

        ::

            SEQUENCE {
                SEQUENCE { OID rsaEncryption, NULL },
                BIT STRING { SEQUENCE { INTEGER n, INTEGER e } }
            }
        """
        rsa_public_key = encode_sequence(
            encode_integer(self.modulus, field="modulus"),
            encode_integer(self.exponent, field="exponent"),
        )
        return encode_sequence(
            encode_sequence(encode_oid(OID_RSA_ENCRYPTION), encode_null()),
            encode_bit_string(rsa_public_key, field="subject_public_key"),
        )

    def to_public_key(self) -> rsa.RSAPublicKey:
        """Return a ``cryptography`` key object for signature verification."""
        return rsa.RSAPublicNumbers(self.exponent, self.modulus).public_key()


def parse_public_key(
    exported: bytes | str | Mapping[str, Any],
    *,
    allowed_sizes: tuple[int, ...] = DEFAULT_KEY_SIZES,
) -> PublicKeyMaterial:
    """Parse a custody-service public key export and validate it.

    Parameters
    ----------
    exported:
        DER bytes, PEM bytes/text, or an RSA JWK mapping.
    allowed_sizes:
        Accepted RSA key sizes in bits.

    Raises
    ------
    KeyMaterialError
        If the export is absent, malformed, not RSA, or of an
        unsupported size.

    """
    if not exported:
        msg = "Key custody service returned no public key"
        raise KeyMaterialError(msg)

    if isinstance(exported, Mapping):
        material = _from_jwk(exported)
    else:
        material = _from_encoded(
            exported.encode("ascii") if isinstance(exported, str) else bytes(exported),
        )

    validate_key_material(material, allowed_sizes)
    log.debug(
        "Parsed RSA-%d public key (e=%d)",
        material.key_size,
        material.exponent,
    )
    return material


def validate_key_material(
    material: PublicKeyMaterial,
    allowed_sizes: tuple[int, ...] = DEFAULT_KEY_SIZES,
) -> None:
    """Check exponent sanity and that the modulus fits an allowed size bucket."""
    if material.exponent < _MIN_EXPONENT or material.exponent % 2 == 0:
        msg = f"RSA public exponent {material.exponent} is not a valid odd integer >= 3"
        raise KeyMaterialError(msg)
    if material.exponent >= material.modulus:
        msg = "RSA public exponent is not smaller than the modulus"
        raise KeyMaterialError(msg)
    if material.key_size not in allowed_sizes:
        msg = (
            f"Unsupported RSA modulus length of {material.byte_length} bytes "
            f"({material.modulus.bit_length()} bits); "
            f"supported sizes: {sorted(allowed_sizes)}"
        )
        raise KeyMaterialError(msg)


def _from_encoded(blob: bytes) -> PublicKeyMaterial:
    """Load DER or PEM with ``cryptography``."""
    try:
        if blob.lstrip().startswith(b"-----BEGIN"):
            key = serialization.load_pem_public_key(blob)
        else:
            key = serialization.load_der_public_key(blob)
    except (ValueError, TypeError) as exc:
        msg = f"Failed to parse public key from key custody service: {exc}"
        raise KeyMaterialError(msg) from exc
    except UnsupportedAlgorithm as exc:
        msg = f"Unsupported public key encoding from key custody service: {exc}"
        raise KeyMaterialError(msg) from exc

    if not isinstance(key, rsa.RSAPublicKey):
        msg = f"Key custody service returned a {type(key).__name__}, expected an RSA key"
        raise KeyMaterialError(msg)
    numbers = key.public_numbers()
    return PublicKeyMaterial(modulus=numbers.n, exponent=numbers.e)


def _from_jwk(jwk: Mapping[str, Any]) -> PublicKeyMaterial:
    """Decode the ``n`` and ``e`` members of an RSA JWK."""
    kty = jwk.get("kty")
    if kty not in ("RSA", "RSA-HSM"):
        msg = f"Key custody service returned a {kty!r} JWK, expected an RSA key"
        raise KeyMaterialError(msg)
    return PublicKeyMaterial(
        modulus=_b64url_uint(jwk.get("n"), "n"),
        exponent=_b64url_uint(jwk.get("e"), "e"),
    )


def _b64url_uint(value: Any, member: str) -> int:  # noqa: ANN401
    if not isinstance(value, str) or not value:
        msg = f"RSA JWK is missing member '{member}'"
        raise KeyMaterialError(msg)
    padded = value + "=" * (-len(value) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        msg = f"RSA JWK member '{member}' is not valid base64url: {exc}"
        raise KeyMaterialError(msg) from exc
    if not raw:
        msg = f"RSA JWK member '{member}' is empty"
        raise KeyMaterialError(msg)
    return int.from_bytes(raw, "big")
