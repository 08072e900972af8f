"""Local key custody backend: unencrypted PEM private keys on disk.

Each key lives at ``<key_directory>/<key_id>.pem``.  Intended for
development, tests and offline bootstrap; production deployments keep
keys in a vault and use the ``http`` backend.
"""

from __future__ import annotations

import logging
import os
import re
import stat
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa, utils

from kmscert.custody.base import KeyCustodyBackend
from kmscert.errors import (
    AccessDeniedError,
    CustodyBackendError,
    KeyMaterialError,
    KeyNotFoundError,
    SignerRejected,
)

if TYPE_CHECKING:
    from kmscert.config.settings import CustodySettings
    from kmscert.core.types import SigningAlgorithm

log = logging.getLogger(__name__)

_KEY_ID_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]*$")


class LocalKeyCustody(KeyCustodyBackend):
    """Serve public keys and signatures from PEM files in a directory."""

    def __init__(self, custody_settings: CustodySettings, **kwargs: Any) -> None:
        super().__init__(custody_settings, **kwargs)
        self._directory = Path(custody_settings.local.key_directory)

    def startup_check(self) -> None:
        """Verify the key directory exists."""
        if not self._settings.local.key_directory:
            msg = "custody.local.key_directory is required for the local custody backend"
            raise CustodyBackendError(msg)
        if not self._directory.is_dir():
            msg = f"Key directory not found: {self._directory}"
            raise CustodyBackendError(msg)

    def _key_path(self, key_id: str) -> Path:
        if not _KEY_ID_RE.fullmatch(key_id):
            msg = f"Invalid key identifier '{key_id}' for local custody"
            raise KeyNotFoundError(msg)
        return self._directory / f"{key_id}.pem"

    def _load_private_key(self, key_id: str) -> rsa.RSAPrivateKey:
        """Load the RSA private key stored under *key_id*.

        Raises
        ------
        KeyNotFoundError
            If no file exists for *key_id*.
        AccessDeniedError
            If the file cannot be read.
        KeyMaterialError
            If the file is not an unencrypted RSA private key.

        """
        path = self._key_path(key_id)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            msg = f"Key '{key_id}' not found: {path}"
            raise KeyNotFoundError(msg) from None
        except PermissionError as exc:
            msg = f"Cannot read key file {path}: {exc}"
            raise AccessDeniedError(msg) from exc

        self._check_key_permissions(path)
        try:
            key = serialization.load_pem_private_key(data, password=None)
        except (ValueError, TypeError) as exc:
            msg = f"Failed to load private key from {path}: {exc}"
            raise KeyMaterialError(msg) from exc

        if not isinstance(key, rsa.RSAPrivateKey):
            msg = f"Key '{key_id}' is {type(key).__name__}, expected an RSA private key"
            raise KeyMaterialError(msg)
        return key

    @staticmethod
    def _check_key_permissions(path: Path) -> None:
        """Warn if the key file is readable or writable by group or others."""
        try:
            mode = os.stat(path).st_mode
        except OSError:
            return
        if mode & (stat.S_IRGRP | stat.S_IROTH | stat.S_IWGRP | stat.S_IWOTH):
            log.warning(
                "Private key file '%s' has overly permissive "
                "permissions (mode=%o). Recommend chmod 600.",
                path,
                stat.S_IMODE(mode),
            )

    def export_public_key(self, key_id: str) -> bytes:
        """Return the SubjectPublicKeyInfo DER for *key_id*."""
        key = self._load_private_key(key_id)
        return key.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def _sign_digest(
        self,
        digest: bytes,
        *,
        key_id: str,
        algorithm: SigningAlgorithm,
    ) -> bytes:
        try:
            key = self._load_private_key(key_id)
        except KeyMaterialError as exc:
            raise SignerRejected(exc.detail) from exc
        log.debug("Signing %s digest with local key '%s'", algorithm.value, key_id)
        return key.sign(digest, padding.PKCS1v15(), utils.Prehashed(hashes.SHA256()))
