"""
Document signing through the external signing service.

    POST {base}/sign  {"payload", "certificate", "password", "filename"}  ->  {"signed_payload": "..."}

The certificate travels base64-encoded.
"""

from __future__ import annotations

import base64

import httpx


class SigningError(Exception):
    """The document could not be signed; nothing was sent to the authority."""
    pass


class HttpDocumentSigner:
    def __init__(self, base_url: str, *, timeout: float = 30.0, client: httpx.Client | None = None) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def sign(self, payload: str, certificate) -> str:
        if not self.base_url:
            raise SigningError("Signing service URL is not configured")
        body = {
            "payload": payload,
            "certificate": base64.b64encode(certificate.content).decode("ascii"),
            "password": certificate.password,
            "filename": certificate.filename,
        }
        try:
            response = self._client.post(f"{self.base_url}/sign", json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise SigningError(f"Signing service answered HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise SigningError(f"Signing service unavailable: {exc}") from exc

        signed = data.get("signed_payload") if isinstance(data, dict) else None
        if not signed:
            raise SigningError("Signing service returned no signed payload")
        return signed
