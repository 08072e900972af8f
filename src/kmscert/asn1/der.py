"""ASN.1 DER encoding primitives.

Small, pure functions that each return the complete TLV (tag, length,
value) encoding of one ASN.1 value.  Constructed values are built by
passing already-encoded children to :func:`encode_sequence` /
:func:`encode_set`.  Nothing here knows about certificates.

Any value that cannot be represented raises
:class:`~kmscert.errors.EncodingError` naming the offending field.
Values are never truncated or substituted.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from kmscert.errors import EncodingError

if TYPE_CHECKING:
    from datetime import datetime

# ---------------------------------------------------------------------------
# Universal tags
# ---------------------------------------------------------------------------
TAG_BOOLEAN = 0x01
TAG_INTEGER = 0x02
TAG_BIT_STRING = 0x03
TAG_OCTET_STRING = 0x04
TAG_NULL = 0x05
TAG_OID = 0x06
TAG_PRINTABLE_STRING = 0x13
TAG_IA5_STRING = 0x16
TAG_UTC_TIME = 0x17
TAG_GENERALIZED_TIME = 0x18
TAG_SEQUENCE = 0x30
TAG_SET = 0x31

# Threshold at which DER length encoding switches to long form.
_DER_LONG_FORM_THRESHOLD = 0x80
# High-bit mask for DER integer sign detection.
_DER_SIGN_BIT_MASK = 0x80
# Long-form lengths carry at most 126 length octets (0xFF is reserved).
_DER_MAX_LENGTH_OCTETS = 126

_CONTEXT_CLASS = 0x80
_CONSTRUCTED = 0x20
_HIGH_TAG_NUMBER = 0x1F
_MAX_LOW_TAG_NUMBER = 30

# X.680 PrintableString alphabet
_PRINTABLE_RE = re.compile(r"^[A-Za-z0-9 '()+,\-./:=?]*$")

_UTC_TIME_MIN_YEAR = 1950
_UTC_TIME_MAX_YEAR = 2049


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------


def encode_length(length: int, *, field: str = "length") -> bytes:
    """Encode an ASN.1 DER length field."""
    if length < 0:
        raise EncodingError(field, f"negative length {length}")
    if length < _DER_LONG_FORM_THRESHOLD:
        return bytes([length])
    # Determine how many bytes needed
    length_bytes = length.to_bytes(
        (length.bit_length() + 7) // 8,
        "big",
    )
    if len(length_bytes) > _DER_MAX_LENGTH_OCTETS:
        raise EncodingError(field, f"length of {len(length_bytes)} octets is not encodable")
    return bytes([_DER_LONG_FORM_THRESHOLD | len(length_bytes)]) + length_bytes


def encode_tlv(tag: int, content: bytes, *, field: str = "value") -> bytes:
    """Frame *content* with a single-octet *tag* and its DER length."""
    return bytes([tag]) + encode_length(len(content), field=field) + content


# ---------------------------------------------------------------------------
# Primitive types
# ---------------------------------------------------------------------------


def encode_integer(value: int, *, field: str = "integer") -> bytes:
    """Encode a non-negative integer as DER INTEGER (tag 0x02).

    A leading ``0x00`` octet is added when the most significant bit of the
    minimal big-endian form is set, so the value never reads as negative.
    """
    if value < 0:
        raise EncodingError(field, f"negative integer {value} is not supported")
    if value == 0:
        content = b"\x00"
    else:
        byte_len = (value.bit_length() + 7) // 8
        content = value.to_bytes(byte_len, "big")
        # Ensure positive encoding -- prepend 0x00 if high bit set
        if content[0] & _DER_SIGN_BIT_MASK:
            content = b"\x00" + content
    return encode_tlv(TAG_INTEGER, content, field=field)


def encode_boolean(value: bool) -> bytes:  # noqa: FBT001
    """Encode a DER BOOLEAN (TRUE is ``0xFF``)."""
    return encode_tlv(TAG_BOOLEAN, b"\xff" if value else b"\x00")


def encode_null() -> bytes:
    """Encode ASN.1 NULL."""
    return b"\x05\x00"


def encode_bit_string(
    data: bytes,
    *,
    unused_bits: int = 0,
    field: str = "bit_string",
) -> bytes:
    """Encode a DER BIT STRING (tag 0x03).

    *unused_bits* is the number of padding bits in the final octet; they
    must be zero, as DER requires.
    """
    if not 0 <= unused_bits <= 7:  # noqa: PLR2004
        raise EncodingError(field, f"unused bit count {unused_bits} out of range 0-7")
    if unused_bits and not data:
        raise EncodingError(field, "empty bit string cannot have unused bits")
    if unused_bits and data[-1] & ((1 << unused_bits) - 1):
        raise EncodingError(field, "unused trailing bits must be zero")
    return encode_tlv(TAG_BIT_STRING, bytes([unused_bits]) + data, field=field)


def encode_octet_string(data: bytes, *, field: str = "octet_string") -> bytes:
    """Encode a DER OCTET STRING (tag 0x04)."""
    return encode_tlv(TAG_OCTET_STRING, data, field=field)


def encode_oid(dotted: str, *, field: str = "oid") -> bytes:
    """Encode a dotted-decimal OBJECT IDENTIFIER (tag 0x06)."""
    try:
        arcs = [int(part) for part in dotted.split(".")]
    except ValueError:
        raise EncodingError(field, f"malformed object identifier {dotted!r}") from None
    if len(arcs) < 2 or any(arc < 0 for arc in arcs):  # noqa: PLR2004
        raise EncodingError(field, f"malformed object identifier {dotted!r}")
    first, second = arcs[0], arcs[1]
    if first > 2 or (first < 2 and second >= 40):  # noqa: PLR2004
        raise EncodingError(field, f"invalid leading arcs in {dotted!r}")

    content = bytearray()
    for arc in [first * 40 + second, *arcs[2:]]:
        # base-128, most significant group first, continuation bit on all but last
        chunk = [arc & 0x7F]
        arc >>= 7
        while arc:
            chunk.append(0x80 | (arc & 0x7F))
            arc >>= 7
        content.extend(reversed(chunk))
    return encode_tlv(TAG_OID, bytes(content), field=field)


def encode_printable_string(value: str, *, field: str = "printable_string") -> bytes:
    """Encode a PrintableString (tag 0x13).

    Only letters, digits, space and ``'()+,-./:=?`` are allowed.
    """
    if not _PRINTABLE_RE.fullmatch(value):
        bad = sorted({ch for ch in value if not _PRINTABLE_RE.fullmatch(ch)})
        raise EncodingError(
            field,
            f"{value!r} contains characters not allowed in a PrintableString: {''.join(bad)!r}",
        )
    return encode_tlv(TAG_PRINTABLE_STRING, value.encode("ascii"), field=field)


def encode_ia5_string(value: str, *, field: str = "ia5_string") -> bytes:
    """Encode an IA5String (tag 0x16); 7-bit ASCII only."""
    try:
        content = value.encode("ascii")
    except UnicodeEncodeError:
        raise EncodingError(field, f"{value!r} is not 7-bit ASCII") from None
    return encode_tlv(TAG_IA5_STRING, content, field=field)


def encode_utc_time(value: datetime, *, field: str = "utc_time") -> bytes:
    """Encode *value* as UTCTime ``YYMMDDHHMMSSZ`` (tag 0x17).

    *value* must already be expressed in UTC.  UTCTime only covers the
    years 1950 through 2049.
    """
    if not _UTC_TIME_MIN_YEAR <= value.year <= _UTC_TIME_MAX_YEAR:
        raise EncodingError(field, f"year {value.year} is outside the UTCTime range 1950-2049")
    return encode_tlv(TAG_UTC_TIME, value.strftime("%y%m%d%H%M%SZ").encode("ascii"), field=field)


def encode_generalized_time(value: datetime, *, field: str = "generalized_time") -> bytes:
    """Encode *value* as GeneralizedTime ``YYYYMMDDHHMMSSZ`` (tag 0x18)."""
    return encode_tlv(
        TAG_GENERALIZED_TIME,
        f"{value.year:04d}{value.strftime('%m%d%H%M%S')}Z".encode("ascii"),
        field=field,
    )


# ---------------------------------------------------------------------------
# Constructed types
# ---------------------------------------------------------------------------


def encode_sequence(*children: bytes) -> bytes:
    """Encode a SEQUENCE of already-encoded *children*, in the given order."""
    return encode_tlv(TAG_SEQUENCE, b"".join(children), field="sequence")


def encode_set(*children: bytes) -> bytes:
    """Encode a SET of already-encoded *children*, in the given order.

    Callers are responsible for DER ordering when there is more than one
    child; every SET in a certificate name holds exactly one element.
    """
    return encode_tlv(TAG_SET, b"".join(children), field="set")


def _check_tag_number(number: int, field: str) -> None:
    if not 0 <= number <= _MAX_LOW_TAG_NUMBER:
        raise EncodingError(field, f"context tag number {number} out of range 0-30")


def encode_explicit(number: int, inner: bytes, *, field: str = "explicit") -> bytes:
    """Wrap *inner* in a constructed context-specific tag ``[number]``."""
    _check_tag_number(number, field)
    return encode_tlv(_CONTEXT_CLASS | _CONSTRUCTED | number, inner, field=field)


def encode_implicit(number: int, inner: bytes, *, field: str = "implicit") -> bytes:
    """Replace the tag of the encoded value *inner* with ``[number]``.

    The length and content of *inner* are kept; the constructed bit is
    carried over from its original tag.
    """
    _check_tag_number(number, field)
    if len(inner) < 2:  # noqa: PLR2004
        raise EncodingError(field, "inner value is not a complete TLV")
    if inner[0] & _HIGH_TAG_NUMBER == _HIGH_TAG_NUMBER:
        raise EncodingError(field, "high tag numbers are not supported")
    return bytes([_CONTEXT_CLASS | (inner[0] & _CONSTRUCTED) | number]) + inner[1:]
