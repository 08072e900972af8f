"""Tests for custody backend registry loading."""

from __future__ import annotations

import types
from unittest.mock import patch

import pytest

from kmscert.config.settings import build_settings
from kmscert.custody.base import KeyCustodyBackend
from kmscert.custody.http import HttpKeyCustody
from kmscert.custody.local import LocalKeyCustody
from kmscert.custody.registry import load_custody_backend
from kmscert.errors import CustodyBackendError


def _settings(backend: str):
    return build_settings({"custody": {"backend": backend}}).custody


class _StubBackend(KeyCustodyBackend):
    def export_public_key(self, key_id):
        return b""

    def _sign_digest(self, digest, *, key_id, algorithm):
        return b""


class _HalfBackend(KeyCustodyBackend):
    def export_public_key(self, key_id):
        return b""


class TestBuiltinBackends:
    def test_http(self):
        backend = load_custody_backend(_settings("http"))
        assert isinstance(backend, HttpKeyCustody)

    def test_local(self):
        backend = load_custody_backend(_settings("local"))
        assert isinstance(backend, LocalKeyCustody)

    def test_allowed_key_sizes_passed_through(self):
        backend = load_custody_backend(_settings("local"), allowed_key_sizes=(4096,))
        assert backend.allowed_key_sizes == (4096,)

    def test_unknown_backend(self):
        with pytest.raises(CustodyBackendError, match="Unknown custody backend 'pkcs11'"):
            load_custody_backend(_settings("pkcs11"))


class TestExternalBackends:
    def _fake_module(self, **attrs):
        module = types.ModuleType("acme_vault.custody")
        for name, value in attrs.items():
            setattr(module, name, value)
        return module

    def test_loads_external_class(self):
        module = self._fake_module(VaultBackend=_StubBackend)
        with patch(
            "kmscert.custody.registry.importlib.import_module",
            return_value=module,
        ) as mock_import:
            backend = load_custody_backend(_settings("ext:acme_vault.custody.VaultBackend"))
        mock_import.assert_called_once_with("acme_vault.custody")
        assert isinstance(backend, _StubBackend)

    def test_not_fully_qualified(self):
        with pytest.raises(CustodyBackendError, match="must be fully qualified"):
            load_custody_backend(_settings("ext:VaultBackend"))

    def test_import_error(self):
        with (
            patch(
                "kmscert.custody.registry.importlib.import_module",
                side_effect=ImportError("No module named 'acme_vault'"),
            ),
            pytest.raises(CustodyBackendError, match="Failed to load custody backend"),
        ):
            load_custody_backend(_settings("ext:acme_vault.custody.VaultBackend"))

    def test_missing_class(self):
        with (
            patch(
                "kmscert.custody.registry.importlib.import_module",
                return_value=self._fake_module(),
            ),
            pytest.raises(CustodyBackendError, match="Failed to load"),
        ):
            load_custody_backend(_settings("ext:acme_vault.custody.VaultBackend"))

    def test_not_a_subclass(self):
        module = self._fake_module(VaultBackend=object)
        with (
            patch("kmscert.custody.registry.importlib.import_module", return_value=module),
            pytest.raises(CustodyBackendError, match="not a subclass of KeyCustodyBackend"),
        ):
            load_custody_backend(_settings("ext:acme_vault.custody.VaultBackend"))

    def test_missing_sign_method(self):
        module = self._fake_module(VaultBackend=_HalfBackend)
        with (
            patch("kmscert.custody.registry.importlib.import_module", return_value=module),
            pytest.raises(CustodyBackendError, match=r"does not implement '_sign_digest\(\)'"),
        ):
            load_custody_backend(_settings("ext:acme_vault.custody.VaultBackend"))
