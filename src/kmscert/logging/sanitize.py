"""Redaction of key material and certificate bodies before logging.

:func:`sanitize_for_logs` walks dicts, lists and tuples and rewrites
anything bulky or sensitive: PEM bodies, raw ``bytes`` (signatures, DER)
and the numeric members of JWKs.  Identifiers, sizes and other
metadata are left alone.
"""

from __future__ import annotations

import re
from typing import Any

_PEM_BLOCK_RE = re.compile(
    r"(?P<begin>-----BEGIN (?P<label>[A-Z0-9 ]+)-----)"
    r"[\s\S]*?"
    r"(?P<end>-----END (?P=label)-----)",
)

# JWK members that are never key material
_JWK_METADATA = frozenset({"kty", "kid", "alg", "use", "key_ops", "crv"})

REDACTED = "[REDACTED]"


def sanitize_pem(pem: str) -> str:
    """Keep the BEGIN/END lines of each PEM block and drop its body."""
    return _PEM_BLOCK_RE.sub(
        lambda m: f"{m.group('begin')}\n{REDACTED}\n{m.group('end')}",
        pem,
    )


def sanitize_jwk(jwk: dict) -> dict:
    """Return a copy of *jwk* keeping only its metadata members."""
    return {k: (v if k in _JWK_METADATA else REDACTED) for k, v in jwk.items()}


def sanitize_for_logs(data: Any) -> Any:  # noqa: ANN401
    """Recursively redact sensitive material in *data*.

    ``bytes`` become ``"[<n> bytes]"``; dicts carrying ``kty`` are
    treated as JWKs.
    """
    if isinstance(data, (bytes, bytearray)):
        return f"[{len(data)} bytes]"
    if isinstance(data, str):
        return sanitize_pem(data) if "-----BEGIN " in data else data
    if isinstance(data, dict):
        if "kty" in data:
            return sanitize_jwk(data)
        return {key: sanitize_for_logs(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return type(data)(sanitize_for_logs(item) for item in data)
    return data
