"""Key custody capability interfaces.

The issuance core talks to the service holding the private key through
exactly two capabilities:

:class:`KeyMaterialProvider`
    Exports the public half of a key.  Subclasses implement
    :meth:`~KeyMaterialProvider.export_public_key`, returning whatever the
    service hands out (SPKI DER, PEM, or an RSA JWK); the shared
    :meth:`~KeyMaterialProvider.get_public_key` parses and validates it.

:class:`DigestSigner`
    Signs a SHA-256 digest with RSASSA-PKCS1-v1_5 and returns the raw
    signature, exactly as many bytes as the modulus.

Concrete backends (HTTP, local PEM files, custom ``ext:`` classes)
inherit from :class:`KeyCustodyBackend`, which combines both.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from kmscert.cert.public_key import DEFAULT_KEY_SIZES, PublicKeyMaterial, parse_public_key
from kmscert.core.types import SigningAlgorithm
from kmscert.errors import InvalidDigestLength, SignerRejected

if TYPE_CHECKING:
    from kmscert.config.settings import CustodySettings

log = logging.getLogger(__name__)

SHA256_DIGEST_LENGTH = 32

ExportedKey = bytes | str | Mapping[str, Any]


class KeyMaterialProvider(abc.ABC):
    """Source of public key material addressed by key identifier."""

    allowed_key_sizes: tuple[int, ...] = DEFAULT_KEY_SIZES

    @abc.abstractmethod
    def export_public_key(self, key_id: str) -> ExportedKey:
        """Return the service's export of the public key for *key_id*.

        Raises
        ------
        KeyNotFoundError
            If the service holds no key under *key_id*.
        AccessDeniedError
            If the caller may not read the key.
        KeyMaterialError
            On any other retrieval failure.

        """

    def get_public_key(self, key_id: str) -> PublicKeyMaterial:
        """Export, parse and validate the public key for *key_id*."""
        exported = self.export_public_key(key_id)
        return parse_public_key(exported, allowed_sizes=self.allowed_key_sizes)


class DigestSigner(abc.ABC):
    """Remote RSASSA-PKCS1-v1_5 signer over precomputed SHA-256 digests."""

    def sign_digest(
        self,
        digest: bytes,
        *,
        key_id: str,
        algorithm: SigningAlgorithm = SigningAlgorithm.RS256,
    ) -> bytes:
        """Sign *digest* with the custody key *key_id*.

        The digest length is checked before any I/O.  The signer is called
        exactly once; failures are never retried here.

        Raises
        ------
        InvalidDigestLength
            If *digest* is not 32 bytes.
        SignerUnavailable
            On transport or authentication failure.
        SignerRejected
            If the service declines to sign.

        """
        if len(digest) != SHA256_DIGEST_LENGTH:
            raise InvalidDigestLength(len(digest), SHA256_DIGEST_LENGTH)
        if algorithm is not SigningAlgorithm.RS256:
            msg = f"Unsupported signing algorithm {algorithm!r}"
            raise SignerRejected(msg)
        return self._sign_digest(digest, key_id=key_id, algorithm=algorithm)

    @abc.abstractmethod
    def _sign_digest(
        self,
        digest: bytes,
        *,
        key_id: str,
        algorithm: SigningAlgorithm,
    ) -> bytes:
        """Backend-specific signing call; inputs are already validated."""


class KeyCustodyBackend(KeyMaterialProvider, DigestSigner):
    """Base class for all key custody backend implementations.

    Parameters
    ----------
    custody_settings:
        The full ``custody`` configuration section.
    allowed_key_sizes:
        RSA key sizes accepted from this backend.

    """

    def __init__(
        self,
        custody_settings: CustodySettings,
        *,
        allowed_key_sizes: tuple[int, ...] = DEFAULT_KEY_SIZES,
    ) -> None:
        self._settings = custody_settings
        self.allowed_key_sizes = allowed_key_sizes

    def startup_check(self) -> None:
        """Optional health check.

        Called by the CLI before issuing to verify the backend is
        configured.  Default implementation is a no-op.

        Raises
        ------
        CustodyBackendError
            If the backend is misconfigured.

        """
