"""Identity and validity value objects.

:class:`DistinguishedName` validates its fields on construction, so an
unencodable name is rejected before any key custody call is made.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime

from kmscert.asn1.der import encode_printable_string
from kmscert.errors import EncodingError

# X.520 attribute type OIDs
OID_COUNTRY = "2.5.4.6"
OID_STATE = "2.5.4.8"
OID_LOCALITY = "2.5.4.7"
OID_ORGANIZATION = "2.5.4.10"
OID_COMMON_NAME = "2.5.4.3"

_COUNTRY_LENGTH = 2
_UPPER_BOUND = 64  # ub-common-name et al. (RFC 5280 Appendix A)

ATTRIBUTE_FIELDS = {
    OID_COUNTRY: "country",
    OID_STATE: "state",
    OID_LOCALITY: "locality",
    OID_ORGANIZATION: "organization",
    OID_COMMON_NAME: "common_name",
}

_RFC4514_LABELS = {
    OID_COUNTRY: "C",
    OID_STATE: "ST",
    OID_LOCALITY: "L",
    OID_ORGANIZATION: "O",
    OID_COMMON_NAME: "CN",
}


@dataclass(frozen=True)
class DistinguishedName:
    """Subject (and, self-signed, issuer) name.

    Encoded in the fixed order C, ST, L, O, CN.  ``locality`` is optional
    and left out of the encoding when ``None``.
    """

    country: str
    state: str
    organization: str
    common_name: str
    locality: str | None = None

    def __post_init__(self) -> None:
        if len(self.country) != _COUNTRY_LENGTH:
            raise EncodingError(
                "country",
                f"must be exactly two characters, got {self.country!r}",
            )
        for oid, value in self.attributes():
            field = ATTRIBUTE_FIELDS[oid]
            if not value:
                raise EncodingError(field, "must not be empty")
            if len(value) > _UPPER_BOUND:
                raise EncodingError(field, f"longer than {_UPPER_BOUND} characters")
            # Raises EncodingError naming the field on a bad character
            encode_printable_string(value, field=field)

    def attributes(self) -> list[tuple[str, str]]:
        """Return ``(oid, value)`` pairs in encoding order."""
        pairs = [(OID_COUNTRY, self.country), (OID_STATE, self.state)]
        if self.locality is not None:
            pairs.append((OID_LOCALITY, self.locality))
        pairs.append((OID_ORGANIZATION, self.organization))
        pairs.append((OID_COMMON_NAME, self.common_name))
        return pairs

    def rfc4514(self) -> str:
        """Render the name most-specific first, e.g. ``CN=x,O=y,ST=z,C=GB``."""
        parts = []
        for oid, value in reversed(self.attributes()):
            escaped = value.replace("\\", "\\\\").replace(",", "\\,").replace("+", "\\+")
            parts.append(f"{_RFC4514_LABELS[oid]}={escaped}")
        return ",".join(parts)


@dataclass(frozen=True)
class Validity:
    """Certificate validity window, UTC, whole seconds."""

    not_before: datetime
    not_after: datetime

    def __post_init__(self) -> None:
        if self.not_after <= self.not_before:
            raise EncodingError("validity", "not_after must be later than not_before")

    @classmethod
    def for_years(cls, not_before: datetime, years: int) -> Validity:
        """Build a window of *years* whole calendar years from *not_before*.

        *not_before* is converted to UTC and truncated to seconds.  A
        29 February start lands on 28 February in a non-leap end year.
        """
        if isinstance(years, bool) or not isinstance(years, int) or years < 1:
            raise EncodingError("years", f"must be a positive whole number, got {years!r}")
        start = truncate_to_seconds(not_before)
        try:
            end = start.replace(year=start.year + years)
        except ValueError:
            end = start.replace(year=start.year + years, day=28)
        return cls(not_before=start, not_after=end)


def truncate_to_seconds(value: datetime) -> datetime:
    """Return *value* in UTC with microseconds dropped.

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).replace(microsecond=0)


def generate_serial_number(bits: int = 159) -> int:
    """Return a random, non-zero serial number of at most *bits* bits."""
    while True:
        serial = secrets.randbits(bits)
        if serial:
            return serial
