"""Root conftest for the kmscert test suite."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest
import yaml
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa, utils

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from kmscert.config.settings import build_settings  # noqa: E402
from kmscert.custody.base import KeyCustodyBackend  # noqa: E402
from kmscert.models.identity import DistinguishedName  # noqa: E402

# ---------------------------------------------------------------------------
# RSA keys (generated once per session; key generation is slow)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    """A 2048-bit RSA key with e=65537."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_key() -> rsa.RSAPrivateKey:
    """A second, unrelated 2048-bit RSA key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture()
def spki_der(rsa_key) -> bytes:
    return rsa_key.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@pytest.fixture()
def robot_subject() -> DistinguishedName:
    """The reference subject C=GB, ST=Manchester, O=ACME Certificates Inc."""
    return DistinguishedName(
        country="GB",
        state="Manchester",
        organization="ACME Certificates Inc.",
        common_name="Robot Certificate 1",
    )


# ---------------------------------------------------------------------------
# In-memory custody backend
# ---------------------------------------------------------------------------


class FakeCustody(KeyCustodyBackend):
    """Custody backend holding real RSA keys in memory.

    Records every digest it is asked to sign in :attr:`signed_digests`.
    ``sign_error`` is raised instead of signing when set;
    ``signature_override`` replaces the real signature when set.
    """

    def __init__(self, keys: dict[str, rsa.RSAPrivateKey], **kwargs) -> None:
        super().__init__(build_settings({}).custody, **kwargs)
        self.keys = keys
        self.signed_digests: list[bytes] = []
        self.export_calls = 0
        self.sign_error: Exception | None = None
        self.signature_override: bytes | None = None

    def export_public_key(self, key_id: str) -> bytes:
        from kmscert.errors import KeyNotFoundError

        self.export_calls += 1
        if key_id not in self.keys:
            raise KeyNotFoundError(f"Key '{key_id}' not found")
        return self.keys[key_id].public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def _sign_digest(self, digest: bytes, *, key_id: str, algorithm) -> bytes:
        self.signed_digests.append(digest)
        if self.sign_error is not None:
            raise self.sign_error
        if self.signature_override is not None:
            return self.signature_override
        return self.keys[key_id].sign(
            digest,
            padding.PKCS1v15(),
            utils.Prehashed(hashes.SHA256()),
        )


@pytest.fixture()
def fake_custody(rsa_key) -> FakeCustody:
    return FakeCustody({"robot-key-1": rsa_key})


# ---------------------------------------------------------------------------
# Config files
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data() -> dict:
    """Return a dict containing the minimum required config fields."""
    return {
        "custody": {
            "backend": "http",
            "http": {"base_url": "https://vault.example.com/v1"},
        },
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# Global state cleanup: autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the KmscertConfig singleton before and after every test."""
    from kmscert.config.kmscert_config import KmscertConfig

    KmscertConfig.reset()
    yield
    KmscertConfig.reset()


@pytest.fixture(autouse=True)
def reset_kmscert_loggers():
    """Undo any ``configure_logging`` call so caplog keeps working."""
    yield
    for name in ("kmscert", "kmscert.audit"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True
