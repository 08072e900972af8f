"""Error scenario and protocol tests for HttpKeyCustody."""

from __future__ import annotations

import base64
import json
import urllib.error
from datetime import UTC, datetime
from io import BytesIO
from unittest.mock import MagicMock, call, patch

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, utils

from kmscert.cert.assembler import issue_certificate
from kmscert.config.settings import build_settings
from kmscert.custody.http import HttpKeyCustody
from kmscert.errors import (
    AccessDeniedError,
    CustodyBackendError,
    KeyMaterialError,
    KeyNotFoundError,
    SignerRejected,
    SignerUnavailable,
)
from kmscert.models.certificate import IssuanceRequest

_DIGEST = bytes(range(32))

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_custody(**http_overrides) -> HttpKeyCustody:
    """Build an HttpKeyCustody with sensible defaults."""
    http = {
        "base_url": "https://vault.example.com/v1/",
        "auth_header": "Authorization",
        "auth_value": "Bearer test-token",
        "max_retries": 0,
    }
    http.update(http_overrides)
    settings = build_settings({"custody": {"backend": "http", "http": http}})
    return HttpKeyCustody(settings.custody)


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _jwk(key) -> dict:
    numbers = key.public_key().public_numbers()
    return {
        "kty": "RSA",
        "n": _b64url(numbers.n.to_bytes(256, "big")),
        "e": _b64url(numbers.e.to_bytes(3, "big")),
    }


def _mock_response(payload, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status = status
    resp.read.return_value = (
        payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    )
    return resp


def _mock_http_error(code: int, body: str = "") -> urllib.error.HTTPError:
    """Create an HTTPError with a readable body."""
    return urllib.error.HTTPError(
        url="https://vault.example.com/v1/keys/robot",
        code=code,
        msg=f"HTTP {code}",
        hdrs=None,
        fp=BytesIO(body.encode("utf-8")),
    )


@pytest.fixture()
def opener():
    with patch("urllib.request.build_opener") as mock_opener_fn:
        mock_opener = MagicMock()
        mock_opener_fn.return_value = mock_opener
        yield mock_opener


@pytest.fixture()
def no_sleep():
    with patch("kmscert.custody.http.time.sleep") as mock_sleep:
        yield mock_sleep


# ---------------------------------------------------------------------------
# Public key export
# ---------------------------------------------------------------------------


class TestExportPublicKey:
    def test_jwk_response(self, opener, rsa_key):
        opener.open.return_value = _mock_response({"key": _jwk(rsa_key)})
        material = _make_custody().get_public_key("robot")
        assert material.modulus == rsa_key.public_key().public_numbers().n
        assert material.exponent == 65537

    def test_pem_response(self, opener, rsa_key):
        pem = rsa_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")
        opener.open.return_value = _mock_response({"public_key": pem})
        assert _make_custody().get_public_key("robot").key_size == 2048

    def test_request_shape(self, opener, rsa_key):
        opener.open.return_value = _mock_response({"key": _jwk(rsa_key)})
        _make_custody(timeout_seconds=7).export_public_key("team/robot 1")

        req = opener.open.call_args[0][0]
        assert req.full_url == "https://vault.example.com/v1/keys/team%2Frobot%201"
        assert req.get_method() == "GET"
        assert req.get_header("Authorization") == "Bearer test-token"
        assert req.get_header("Accept") == "application/json"
        assert opener.open.call_args[1]["timeout"] == 7

    def test_custom_auth_header(self, opener, rsa_key):
        opener.open.return_value = _mock_response({"key": _jwk(rsa_key)})
        _make_custody(auth_header="X-Vault-Token", auth_value="s.abc").export_public_key("robot")
        req = opener.open.call_args[0][0]
        assert req.get_header("X-vault-token") == "s.abc"

    def test_no_auth_header_when_unset(self, opener, rsa_key):
        opener.open.return_value = _mock_response({"key": _jwk(rsa_key)})
        _make_custody(auth_value="").export_public_key("robot")
        assert opener.open.call_args[0][0].get_header("Authorization") is None

    def test_404_key_not_found(self, opener):
        opener.open.side_effect = _mock_http_error(404, "no such key")
        with pytest.raises(KeyNotFoundError) as exc_info:
            _make_custody().export_public_key("robot")
        assert exc_info.value.retryable is False

    @pytest.mark.parametrize("code", [401, 403])
    def test_auth_failure_access_denied(self, opener, code):
        opener.open.side_effect = _mock_http_error(code, "forbidden")
        with pytest.raises(AccessDeniedError):
            _make_custody().export_public_key("robot")

    def test_400_not_retried(self, opener, no_sleep):
        opener.open.side_effect = _mock_http_error(400, "Bad Request")
        with pytest.raises(KeyMaterialError) as exc_info:
            _make_custody(max_retries=3).export_public_key("robot")
        assert exc_info.value.retryable is False
        assert "400" in exc_info.value.detail
        assert opener.open.call_count == 1
        no_sleep.assert_not_called()

    def test_500_retried_with_backoff(self, opener, no_sleep):
        opener.open.side_effect = _mock_http_error(503, "unavailable")
        with pytest.raises(KeyMaterialError) as exc_info:
            _make_custody(max_retries=2, retry_delay_seconds=0.5).export_public_key("robot")
        assert exc_info.value.retryable is True
        assert opener.open.call_count == 3
        assert no_sleep.call_args_list == [call(0.5), call(1.0)]

    def test_connection_error_then_success(self, opener, no_sleep, rsa_key):
        opener.open.side_effect = [
            urllib.error.URLError(reason="timed out"),
            _mock_response({"key": _jwk(rsa_key)}),
        ]
        exported = _make_custody(max_retries=1).export_public_key("robot")
        assert exported["kty"] == "RSA"
        assert no_sleep.call_count == 1

    def test_missing_fields(self, opener):
        opener.open.return_value = _mock_response({"id": "robot"})
        with pytest.raises(KeyMaterialError, match="neither"):
            _make_custody().export_public_key("robot")

    def test_invalid_json(self, opener):
        opener.open.return_value = _mock_response(b"<html>not json</html>")
        with pytest.raises(KeyMaterialError, match="invalid JSON") as exc_info:
            _make_custody().export_public_key("robot")
        assert exc_info.value.retryable is False

    def test_non_object_json(self, opener):
        opener.open.return_value = _mock_response(["not", "an", "object"])
        with pytest.raises(KeyMaterialError, match="not an object"):
            _make_custody().export_public_key("robot")


# ---------------------------------------------------------------------------
# Digest signing
# ---------------------------------------------------------------------------


class TestSignDigest:
    def test_request_and_response(self, opener):
        opener.open.return_value = _mock_response({"value": _b64url(b"\x01" * 256)})
        signature = _make_custody().sign_digest(_DIGEST, key_id="robot")
        assert signature == b"\x01" * 256

        req = opener.open.call_args[0][0]
        assert req.full_url == "https://vault.example.com/v1/keys/robot/sign"
        assert req.get_method() == "POST"
        assert req.get_header("Content-type") == "application/json"
        assert json.loads(req.data) == {"alg": "RS256", "value": _b64url(_DIGEST)}

    @pytest.mark.parametrize("code", [500, 502, 401, 403, 429])
    def test_unavailable(self, opener, code):
        opener.open.side_effect = _mock_http_error(code, "nope")
        with pytest.raises(SignerUnavailable) as exc_info:
            _make_custody().sign_digest(_DIGEST, key_id="robot")
        assert exc_info.value.retryable is True

    @pytest.mark.parametrize("code", [400, 404, 409, 422])
    def test_rejected(self, opener, code):
        opener.open.side_effect = _mock_http_error(code, "policy")
        with pytest.raises(SignerRejected) as exc_info:
            _make_custody().sign_digest(_DIGEST, key_id="robot")
        assert exc_info.value.retryable is False

    def test_never_retried(self, opener, no_sleep):
        opener.open.side_effect = _mock_http_error(503, "busy")
        with pytest.raises(SignerUnavailable):
            _make_custody(max_retries=5).sign_digest(_DIGEST, key_id="robot")
        assert opener.open.call_count == 1
        no_sleep.assert_not_called()

    def test_connection_error(self, opener):
        opener.open.side_effect = urllib.error.URLError(reason="connection refused")
        with pytest.raises(SignerUnavailable, match="connection refused"):
            _make_custody().sign_digest(_DIGEST, key_id="robot")

    def test_missing_value(self, opener):
        opener.open.return_value = _mock_response({"kid": "robot"})
        with pytest.raises(SignerRejected, match="'value'"):
            _make_custody().sign_digest(_DIGEST, key_id="robot")

    def test_invalid_base64(self, opener):
        opener.open.return_value = _mock_response({"value": "A"})
        with pytest.raises(SignerRejected, match="base64url"):
            _make_custody().sign_digest(_DIGEST, key_id="robot")

    def test_short_digest_never_sent(self, opener):
        from kmscert.errors import InvalidDigestLength

        with pytest.raises(InvalidDigestLength):
            _make_custody().sign_digest(b"\x00" * 31, key_id="robot")
        opener.open.assert_not_called()


# ---------------------------------------------------------------------------
# TLS and startup
# ---------------------------------------------------------------------------


class TestTransportConfig:
    def test_startup_check_requires_base_url(self):
        with pytest.raises(CustodyBackendError, match="base_url"):
            _make_custody(base_url="").startup_check()

    def test_startup_check_ok(self):
        _make_custody().startup_check()

    def test_ssl_context_trust_and_mtls(self):
        custody = _make_custody(
            ca_cert_path="/etc/vault/ca.pem",
            client_cert_path="/etc/kmscert/client.pem",
            client_key_path="/etc/kmscert/client.key",
        )
        with patch("ssl.create_default_context") as mock_ctx_fn:
            ctx = MagicMock()
            mock_ctx_fn.return_value = ctx
            assert custody._get_ssl_context() is ctx
            assert custody._get_ssl_context() is ctx

        mock_ctx_fn.assert_called_once()
        ctx.load_verify_locations.assert_called_once_with("/etc/vault/ca.pem")
        ctx.load_cert_chain.assert_called_once_with(
            "/etc/kmscert/client.pem",
            "/etc/kmscert/client.key",
        )


# ---------------------------------------------------------------------------
# Full issuance through the HTTP backend
# ---------------------------------------------------------------------------


class TestIssuanceOverHttp:
    def test_issue(self, opener, rsa_key, robot_subject):
        def vault(req, timeout):
            if req.get_method() == "GET":
                return _mock_response({"key": _jwk(rsa_key)})
            body = json.loads(req.data)
            digest = base64.urlsafe_b64decode(body["value"] + "=" * (-len(body["value"]) % 4))
            signature = rsa_key.sign(digest, padding.PKCS1v15(), utils.Prehashed(hashes.SHA256()))
            return _mock_response({"value": _b64url(signature)})

        opener.open.side_effect = vault
        issued = issue_certificate(
            IssuanceRequest(subject=robot_subject, years=10, key_id="robot"),
            _make_custody(),
            now=datetime(2024, 1, 1, tzinfo=UTC),
        )

        cert = x509.load_der_x509_certificate(issued.der)
        cert.verify_directly_issued_by(cert)
        assert opener.open.call_count == 2
