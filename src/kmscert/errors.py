"""Error taxonomy for certificate issuance.

Every failure raised while issuing a certificate derives from
:class:`IssuanceError`.  Each class carries the pipeline ``stage`` in
which it occurs so the CLI (and the audit log) can report *where* a run
died, and a ``retryable`` flag telling the caller whether restarting the
whole run may succeed.

All errors are terminal for the run that raised them.  A retry always
means a brand new run: fresh serial number, fresh timestamps, fresh
TBSCertificate bytes.
"""

from __future__ import annotations


class IssuanceError(Exception):
    """Base class for all issuance failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether restarting the whole run may succeed.

    """

    stage = "issue"

    def __init__(self, detail: str, *, retryable: bool = False) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


class EncodingError(IssuanceError):
    """A value cannot be represented in DER.

    ``field`` names the offending input (``"common_name"``, ``"email"``,
    ``"length"`` ...).
    """

    stage = "encode"

    def __init__(self, field: str, detail: str) -> None:
        self.field = field
        super().__init__(f"{field}: {detail}")


# ---------------------------------------------------------------------------
# Public key material
# ---------------------------------------------------------------------------


class KeyMaterialError(IssuanceError):
    """The custody service's public key is absent, malformed or unsupported."""

    stage = "public_key"


class KeyNotFoundError(KeyMaterialError):
    """The custody service has no key under the requested identifier."""


class AccessDeniedError(KeyMaterialError):
    """The custody service refused to export the public key."""


# ---------------------------------------------------------------------------
# Remote signing
# ---------------------------------------------------------------------------


class SignerError(IssuanceError):
    """Base class for failures of the remote digest signer."""

    stage = "sign"


class SignerUnavailable(SignerError):
    """Transport or authentication failure talking to the signer.

    Retryable, but only by restarting the whole run.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(detail, retryable=True)


class SignerRejected(SignerError):
    """The custody service declined to sign (policy denial, bad response)."""


class InvalidDigestLength(SignerError):
    """The digest handed to the signer is not a SHA-256 digest."""

    def __init__(self, length: int, expected: int = 32) -> None:
        self.length = length
        self.expected = expected
        super().__init__(f"digest must be {expected} bytes, got {length}")


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


class AssemblyInvariantViolation(IssuanceError):
    """The assembled certificate does not match what was signed.

    Indicates a defect in this package, never bad input.  The certificate
    is discarded rather than emitted.
    """

    stage = "assemble"


class InvalidStateTransition(IssuanceError):
    """An issuance run attempted to skip or repeat a pipeline state."""

    stage = "state"


class CustodyBackendError(IssuanceError):
    """The configured key custody backend cannot be loaded."""

    stage = "custody"
