"""TBSCertificate construction.

:class:`TBSCertificate` is an immutable value; :meth:`TBSCertificate.encode`
is a pure function of its fields, so encoding the same instance twice
always yields identical bytes.  The two-pass signing protocol in
:mod:`kmscert.cert.assembler` relies on this.

::

    TBSCertificate ::= SEQUENCE {
        version         [0] EXPLICIT Version (v3),
        serialNumber        CertificateSerialNumber,
        signature           AlgorithmIdentifier,
        issuer              Name,
        validity            Validity,
        subject             Name,
        subjectPublicKeyInfo SubjectPublicKeyInfo,
        extensions      [3] EXPLICIT Extensions }
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from kmscert.asn1.der import (
    encode_explicit,
    encode_generalized_time,
    encode_integer,
    encode_null,
    encode_oid,
    encode_printable_string,
    encode_sequence,
    encode_set,
    encode_utc_time,
)
from kmscert.models.identity import ATTRIBUTE_FIELDS

if TYPE_CHECKING:
    from datetime import datetime

    from kmscert.cert.extensions import Extension
    from kmscert.cert.public_key import PublicKeyMaterial
    from kmscert.models.identity import DistinguishedName, Validity

VERSION_V3 = 2

OID_SHA256_WITH_RSA = "1.2.840.113549.1.1.11"

# RFC 5280 §4.1.2.5: UTCTime through 2049, GeneralizedTime from 2050
_GENERALIZED_TIME_FROM_YEAR = 2050

_VERSION_TAG = 0
_EXTENSIONS_TAG = 3


def signature_algorithm_der() -> bytes:
    """AlgorithmIdentifier ``SEQUENCE { sha256WithRSAEncryption, NULL }``."""
    return encode_sequence(encode_oid(OID_SHA256_WITH_RSA), encode_null())


def encode_name(name: DistinguishedName) -> bytes:
    """Encode an RDNSequence with one single-valued RDN per attribute."""
    rdns = [
        encode_set(
            encode_sequence(
                encode_oid(oid),
                encode_printable_string(value, field=ATTRIBUTE_FIELDS[oid]),
            ),
        )
        for oid, value in name.attributes()
    ]
    return encode_sequence(*rdns)


def encode_time(value: datetime, *, field: str) -> bytes:
    """Encode a validity bound as UTCTime or GeneralizedTime per RFC 5280."""
    if value.year >= _GENERALIZED_TIME_FROM_YEAR:
        return encode_generalized_time(value, field=field)
    return encode_utc_time(value, field=field)


def encode_validity(validity: Validity) -> bytes:
    return encode_sequence(
        encode_time(validity.not_before, field="not_before"),
        encode_time(validity.not_after, field="not_after"),
    )


@dataclass(frozen=True)
class TBSCertificate:
    """The to-be-signed body of a self-signed certificate.

    ``subject`` is used as both issuer and subject.
    """

    serial_number: int
    subject: DistinguishedName
    validity: Validity
    public_key: PublicKeyMaterial
    extensions: tuple[Extension, ...]

    @property
    def issuer(self) -> DistinguishedName:
        return self.subject

    def encode(self) -> bytes:
        """Return the DER encoding of this TBSCertificate."""
        name = encode_name(self.subject)
        return encode_sequence(
            encode_explicit(_VERSION_TAG, encode_integer(VERSION_V3, field="version")),
            encode_integer(self.serial_number, field="serial_number"),
            signature_algorithm_der(),
            name,
            encode_validity(self.validity),
            name,
            self.public_key.to_spki_der(),
            encode_explicit(
                _EXTENSIONS_TAG,
                encode_sequence(*(ext.encode() for ext in self.extensions)),
                field="extensions",
            ),
        )
