"""Certificate assembly -- the two-pass digest-sign protocol.

The private key never leaves the key custody service.  The signing
workflow:

1. Encode the TBSCertificate (serial and notBefore already frozen)
2. Hash the TBS bytes with SHA-256
3. Send only the digest to the custody service's signer
4. Re-encode the TBSCertificate and check it hashes to the signed digest
5. Assemble ``SEQUENCE { tbs, sha256WithRSAEncryption, BIT STRING sig }``
6. Parse back with ``x509.load_der_x509_certificate()`` and self-verify

Each run walks the :data:`~kmscert.core.state.ISSUANCE_TRANSITIONS` state
machine once.  Any failure moves the run to ``failed``; a retry is a new
run with a new serial number and new timestamps.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from kmscert.asn1.der import encode_bit_string, encode_sequence
from kmscert.cert.extensions import build_extensions, validate_email
from kmscert.cert.tbs import TBSCertificate, signature_algorithm_der
from kmscert.core.state import assert_transition, log_transition
from kmscert.core.types import IssuanceState, SigningAlgorithm
from kmscert.errors import (
    AssemblyInvariantViolation,
    EncodingError,
    IssuanceError,
    SignerUnavailable,
)
from kmscert.logging import audit_events
from kmscert.logging.setup import issuance_context
from kmscert.models.certificate import IssuedCertificate
from kmscert.models.identity import Validity, generate_serial_number

if TYPE_CHECKING:
    from collections.abc import Callable

    from kmscert.config.settings import CertificateSettings
    from kmscert.custody.base import DigestSigner, KeyCustodyBackend
    from kmscert.models.certificate import IssuanceRequest

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DER assembly helpers
# ---------------------------------------------------------------------------


def sha256_digest(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def assemble_certificate_der(
    tbs_der: bytes,
    sig_algorithm_der: bytes,
    signature: bytes,
) -> bytes:
    """Assemble a complete X.509 certificate from components.

    Returns DER encoding of::

        SEQUENCE {
            TBSCertificate      (already DER-encoded),
            AlgorithmIdentifier (already DER-encoded),
            BIT STRING          (signature)
        }
    """
    return encode_sequence(
        tbs_der,
        sig_algorithm_der,
        encode_bit_string(signature, field="signature"),
    )


# ---------------------------------------------------------------------------
# Issuance run
# ---------------------------------------------------------------------------


class CertificateIssuance:
    """A single-shot issuance run over one immutable TBSCertificate.

    :meth:`run` may be called once.  The signer call is the only step
    that performs I/O.
    """

    def __init__(
        self,
        tbs: TBSCertificate,
        signer: DigestSigner,
        *,
        key_id: str,
        verify_signature: bool = True,
        run_id: str | None = None,
    ) -> None:
        self._tbs = tbs
        self._signer = signer
        self._key_id = key_id
        self._verify_signature = verify_signature
        self.run_id = run_id or uuid.uuid4().hex
        self._state = IssuanceState.UNBUILT

    @property
    def state(self) -> IssuanceState:
        return self._state

    def _advance(self, target: IssuanceState) -> None:
        assert_transition(self._state, target)
        log_transition(self.run_id, self._state, target)
        self._state = target

    def run(self) -> IssuedCertificate:
        """Walk the pipeline and return the issued certificate.

        Raises
        ------
        IssuanceError
            Any subclass; the run is left in the ``failed`` state.

        """
        # Reject a second run before touching the state
        assert_transition(self._state, IssuanceState.TBS_READY)
        try:
            return self._run()
        except IssuanceError:
            if self._state not in (IssuanceState.ASSEMBLED, IssuanceState.FAILED):
                self._advance(IssuanceState.FAILED)
            raise

    def _run(self) -> IssuedCertificate:
        tbs_der = self._tbs.encode()
        self._advance(IssuanceState.TBS_READY)

        digest = sha256_digest(tbs_der)
        self._advance(IssuanceState.DIGEST_COMPUTED)

        self._advance(IssuanceState.SIGNATURE_PENDING)
        signature = self._request_signature(digest)
        self._advance(IssuanceState.SIGNED)

        cert_der, cert = self._assemble(digest, signature)
        pem = cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
        self._advance(IssuanceState.ASSEMBLED)

        return IssuedCertificate(
            der=cert_der,
            pem=pem,
            serial_number=self._tbs.serial_number,
            fingerprint=hashlib.sha256(cert_der).hexdigest(),
            not_before=self._tbs.validity.not_before,
            not_after=self._tbs.validity.not_after,
            key_id=self._key_id,
        )

    def _request_signature(self, digest: bytes) -> bytes:
        """Call the remote signer exactly once."""
        log.debug("Requesting signature for digest %s", digest.hex())
        try:
            signature = self._signer.sign_digest(
                digest,
                key_id=self._key_id,
                algorithm=SigningAlgorithm.RS256,
            )
        except IssuanceError:
            raise
        except Exception as exc:  # noqa: BLE001
            msg = f"Signer call failed: {exc}"
            raise SignerUnavailable(msg) from exc
        audit_events.digest_signed(self._key_id, digest, len(signature))
        return signature

    def _assemble(
        self,
        signed_digest: bytes,
        signature: bytes,
    ) -> tuple[bytes, x509.Certificate]:
        """Second encoding pass, splice in the signature, and self-check."""
        expected = self._tbs.public_key.byte_length
        if len(signature) != expected:
            msg = f"Signature is {len(signature)} bytes, expected {expected} for this modulus"
            raise AssemblyInvariantViolation(msg)

        tbs_der = self._tbs.encode()
        if sha256_digest(tbs_der) != signed_digest:
            msg = "Re-encoded TBSCertificate does not match the signed digest"
            raise AssemblyInvariantViolation(msg)

        cert_der = assemble_certificate_der(tbs_der, signature_algorithm_der(), signature)

        try:
            cert = x509.load_der_x509_certificate(cert_der)
        except ValueError as exc:
            msg = f"Assembled certificate does not parse: {exc}"
            raise AssemblyInvariantViolation(msg) from exc
        if cert.tbs_certificate_bytes != tbs_der:
            msg = "Embedded TBSCertificate differs from the signed bytes"
            raise AssemblyInvariantViolation(msg)

        if self._verify_signature:
            try:
                self._tbs.public_key.to_public_key().verify(
                    signature,
                    cert.tbs_certificate_bytes,
                    padding.PKCS1v15(),
                    hashes.SHA256(),
                )
            except InvalidSignature:
                msg = "Custody signature does not verify against the certificate key"
                raise AssemblyInvariantViolation(msg) from None

        return cert_der, cert


# ---------------------------------------------------------------------------
# Pipeline entry point
# ---------------------------------------------------------------------------


def issue_certificate(
    request: IssuanceRequest,
    custody: KeyCustodyBackend,
    *,
    settings: CertificateSettings | None = None,
    now: datetime | None = None,
    serial_factory: Callable[[], int] | None = None,
) -> IssuedCertificate:
    """Issue a self-signed certificate for the custody key ``request.key_id``.

    Input validation happens before any custody call.  The serial number
    and notBefore are frozen exactly once, before the TBSCertificate is
    first encoded.

    Parameters
    ----------
    request:
        Subject, validity length, key id and optional email.
    custody:
        Backend providing both the public key and the digest signer.
    settings:
        The ``certificate`` configuration section; defaults when ``None``.
    now:
        Issuance time; the current UTC time when ``None``.
    serial_factory:
        Serial number source; random ``settings.serial_bits``-bit serials
        when ``None``.

    Raises
    ------
    IssuanceError
        Any subclass.  Nothing is emitted on failure.

    """
    if settings is None:
        from kmscert.config.settings import build_certificate_settings  # noqa: PLC0415

        settings = build_certificate_settings(None)

    run_id = uuid.uuid4().hex
    with issuance_context(run_id=run_id, key_id=request.key_id):
        try:
            return _issue(request, custody, settings, now, serial_factory, run_id)
        except IssuanceError as exc:
            audit_events.issuance_failed(request.key_id, exc)
            raise


def _issue(  # noqa: PLR0913
    request: IssuanceRequest,
    custody: KeyCustodyBackend,
    settings: CertificateSettings,
    now: datetime | None,
    serial_factory: Callable[[], int] | None,
    run_id: str,
) -> IssuedCertificate:
    if request.years > settings.max_validity_years:
        raise EncodingError(
            "years",
            f"{request.years} exceeds the maximum of {settings.max_validity_years}",
        )
    if request.email is not None:
        validate_email(request.email)

    # Freeze every time-derived and random field before the first encoding
    validity = Validity.for_years(now or datetime.now(UTC), request.years)
    serial_number = (
        serial_factory() if serial_factory else generate_serial_number(settings.serial_bits)
    )

    public_key = custody.get_public_key(request.key_id)
    audit_events.public_key_fetched(request.key_id, public_key.key_size)

    tbs = TBSCertificate(
        serial_number=serial_number,
        subject=request.subject,
        validity=validity,
        public_key=public_key,
        extensions=build_extensions(request.email),
    )
    issued = CertificateIssuance(
        tbs,
        custody,
        key_id=request.key_id,
        verify_signature=settings.verify_signature,
        run_id=run_id,
    ).run()

    audit_events.certificate_issued(
        key_id=request.key_id,
        serial=issued.serial_hex,
        fingerprint=issued.fingerprint,
        subject=request.subject.rfc4514(),
        not_after=issued.not_after,
    )
    log.info(
        "Issued self-signed certificate: serial=%s, subject=%s, validity=%d years",
        issued.serial_hex,
        request.subject.rfc4514(),
        request.years,
    )
    return issued
