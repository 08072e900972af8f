r"""HTTP key custody backend: a remote key vault over HTTPS.

The private key never leaves the vault; this client only exports the
public key and asks the vault to sign precomputed digests.
Authentication options include:

- **Header-based auth**: API tokens, Bearer tokens, custom headers
  (configured via ``auth_header`` / ``auth_value``)
- **Mutual TLS (mTLS)**: Client certificate + key for strong identity
  (configured via ``client_cert_path`` / ``client_key_path``)
- **Custom CA trust**: Pin the vault's TLS certificate
  (configured via ``ca_cert_path``)

API contract
------------
**Export public key**: ``GET {base_url}/keys/{key_id}``

Response body (JSON, HTTP 200), either an RSA JWK::

    {
        "key": {"kty": "RSA", "n": "<base64url>", "e": "AQAB"}
    }

or a PEM public key::

    {
        "public_key": "-----BEGIN PUBLIC KEY-----\\n..."
    }

**Sign digest**: ``POST {base_url}/keys/{key_id}/sign``

Request body (JSON)::

    {
        "alg": "RS256",
        "value": "<base64url SHA-256 digest>"
    }

Response body (JSON, HTTP 200)::

    {
        "value": "<base64url PKCS#1 v1.5 signature>"
    }

Public key export is retried on transient failures.  Signing is never
retried: a failed signing call ends the issuance run.
"""

from __future__ import annotations

import base64
import binascii
import contextlib
import json
import logging
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import TYPE_CHECKING, Any

from kmscert.custody.base import ExportedKey, KeyCustodyBackend
from kmscert.errors import (
    AccessDeniedError,
    CustodyBackendError,
    KeyMaterialError,
    KeyNotFoundError,
    SignerRejected,
    SignerUnavailable,
)

if TYPE_CHECKING:
    from kmscert.config.settings import CustodySettings
    from kmscert.core.types import SigningAlgorithm

log = logging.getLogger(__name__)

_HTTP_OK = 200
_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_SERVER_ERROR = 500

_ERROR_BODY_PREVIEW = 500


class _ServiceError(Exception):
    """Internal: a failed exchange with the vault.

    ``status`` is ``None`` when no HTTP response was received.
    """

    def __init__(self, detail: str, *, status: int | None = None) -> None:
        self.detail = detail
        self.status = status
        super().__init__(detail)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class HttpKeyCustody(KeyCustodyBackend):
    """Exports public keys from, and delegates digest signing to, a vault over HTTPS."""

    def __init__(self, custody_settings: CustodySettings, **kwargs: Any) -> None:
        super().__init__(custody_settings, **kwargs)
        self._http = custody_settings.http
        self._ssl_ctx: ssl.SSLContext | None = None

    def startup_check(self) -> None:
        """Verify the vault URL is configured."""
        if not self._http.base_url:
            msg = "custody.http.base_url is required for the http custody backend"
            raise CustodyBackendError(msg)

    # -- transport ----------------------------------------------------------

    def _get_ssl_context(self) -> ssl.SSLContext:
        """Build (and cache) an SSL context with mTLS and CA trust config."""
        if self._ssl_ctx is not None:
            return self._ssl_ctx

        ctx = ssl.create_default_context()

        # Custom CA trust anchor
        if self._http.ca_cert_path:
            ctx.load_verify_locations(self._http.ca_cert_path)

        # mTLS client certificate
        if self._http.client_cert_path and self._http.client_key_path:
            ctx.load_cert_chain(
                self._http.client_cert_path,
                self._http.client_key_path,
            )

        self._ssl_ctx = ctx
        return ctx

    def _key_url(self, key_id: str, suffix: str = "") -> str:
        quoted = urllib.parse.quote(key_id, safe="")
        return f"{self._http.base_url.rstrip('/')}/keys/{quoted}{suffix}"

    def _build_request(
        self,
        url: str,
        payload: dict | None = None,
    ) -> urllib.request.Request:
        """Build a request with auth headers and an optional JSON body."""
        headers = {"Accept": "application/json"}
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = urllib.request.Request(
            url,
            data=data,
            method="POST" if payload is not None else "GET",
            headers=headers,
        )
        # Add auth header if configured
        if self._http.auth_value:
            req.add_header(self._http.auth_header, self._http.auth_value)
        return req

    def _do_single_request(self, url: str, payload: dict | None = None) -> dict:
        """Send a single request and return the parsed JSON response."""
        req = self._build_request(url, payload)
        ctx = self._get_ssl_context()
        handler = urllib.request.HTTPSHandler(context=ctx)
        opener = urllib.request.build_opener(handler)

        try:
            resp = opener.open(req, timeout=self._http.timeout_seconds)
        except urllib.error.HTTPError as exc:
            body = ""
            with contextlib.suppress(Exception):
                body = exc.read().decode("utf-8", errors="replace")[:_ERROR_BODY_PREVIEW]
            msg = f"Key vault returned HTTP {exc.code}: {body}"
            raise _ServiceError(msg, status=exc.code) from exc
        except (urllib.error.URLError, OSError) as exc:
            msg = f"Failed to reach key vault at {url}: {exc}"
            raise _ServiceError(msg) from exc

        if resp.status != _HTTP_OK:
            msg = f"Key vault returned unexpected HTTP {resp.status}"
            raise _ServiceError(msg, status=resp.status)

        try:
            resp_body = json.loads(resp.read().decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            msg = f"Key vault returned invalid JSON response: {exc}"
            raise _ServiceError(msg, status=_HTTP_OK) from exc
        if not isinstance(resp_body, dict):
            msg = "Key vault returned a JSON document that is not an object"
            raise _ServiceError(msg, status=_HTTP_OK)
        return resp_body

    # -- key material -------------------------------------------------------

    def export_public_key(self, key_id: str) -> ExportedKey:
        """Fetch the public key for *key_id*, retrying transient failures."""
        url = self._key_url(key_id)
        max_retries = self._http.max_retries
        delay = self._http.retry_delay_seconds

        log.debug("Fetching public key from key vault: %s", url)
        for attempt in range(max_retries + 1):
            try:
                data = self._do_single_request(url)
                break
            except _ServiceError as exc:
                error = self._export_error(key_id, exc)
                if not error.retryable or attempt == max_retries:
                    raise error from exc
                log.warning(
                    "Key vault attempt %d/%d failed: %s",
                    attempt + 1,
                    max_retries + 1,
                    exc.detail,
                )
                time.sleep(delay * (2**attempt))

        key = data.get("key")
        if isinstance(key, dict):
            return key
        public_key = data.get("public_key")
        if isinstance(public_key, str) and public_key:
            return public_key
        msg = f"Key vault response for '{key_id}' has neither a 'key' nor a 'public_key' field"
        raise KeyMaterialError(msg)

    @staticmethod
    def _export_error(key_id: str, exc: _ServiceError) -> KeyMaterialError:
        if exc.status == _HTTP_NOT_FOUND:
            return KeyNotFoundError(f"Key '{key_id}' not found in key vault")
        if exc.status in (_HTTP_UNAUTHORIZED, _HTTP_FORBIDDEN):
            return AccessDeniedError(f"Access to key '{key_id}' denied: {exc.detail}")
        transient = exc.status is None or exc.status >= _HTTP_SERVER_ERROR
        return KeyMaterialError(exc.detail, retryable=transient)

    # -- signing ------------------------------------------------------------

    def _sign_digest(
        self,
        digest: bytes,
        *,
        key_id: str,
        algorithm: SigningAlgorithm,
    ) -> bytes:
        """Ask the vault to sign *digest*; called exactly once per run."""
        url = self._key_url(key_id, "/sign")
        payload = {"alg": algorithm.value, "value": _b64url_encode(digest)}

        log.debug("Requesting %s signature from key vault: %s", algorithm.value, url)
        try:
            data = self._do_single_request(url, payload)
        except _ServiceError as exc:
            if exc.status is None or exc.status >= _HTTP_SERVER_ERROR or exc.status in (
                _HTTP_UNAUTHORIZED,
                _HTTP_FORBIDDEN,
                _HTTP_TOO_MANY_REQUESTS,
            ):
                raise SignerUnavailable(exc.detail) from exc
            raise SignerRejected(exc.detail) from exc

        value = data.get("value")
        if not isinstance(value, str) or not value:
            msg = "Key vault sign response is missing the 'value' field"
            raise SignerRejected(msg)
        try:
            return _b64url_decode(value)
        except (binascii.Error, UnicodeEncodeError) as exc:
            msg = f"Key vault returned a signature that is not valid base64url: {exc}"
            raise SignerRejected(msg) from exc
