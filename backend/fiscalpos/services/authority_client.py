"""
Tax authority gateway client.

The authority's own wire format is handled by the gateway service; this
client speaks a small JSON contract to it:

    POST {base}/documents                 {"access_key", "environment", "signed_payload"}
    GET  {base}/documents/{access_key}    ?environment=test|production

Both answer {"status": ..., "authorization_code": ..., "authorized_at": ..., "messages": [...]}.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import httpx


AUTHORITY_AUTHORIZED = "AUTHORIZED"
AUTHORITY_REJECTED = "REJECTED"
AUTHORITY_IN_PROCESS = "IN_PROCESS"

_REJECTED_ALIASES = {"REJECTED", "NOT_AUTHORIZED", "RETURNED"}


class AuthorityUnavailableError(Exception):
    """Network or server failure talking to the authority; safe to retry."""
    pass


@dataclass(frozen=True)
class AuthorityResponse:
    status: str
    authorization_code: str | None = None
    authorized_at: datetime | None = None
    message: str = ""

    @property
    def is_authorized(self) -> bool:
        return self.status == AUTHORITY_AUTHORIZED


def _parse_datetime(value) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_authority_payload(data: dict) -> AuthorityResponse:
    """Normalize a gateway answer; anything not final counts as IN_PROCESS."""
    raw_status = str(data.get("status") or "").strip().upper()
    if raw_status == AUTHORITY_AUTHORIZED:
        status = AUTHORITY_AUTHORIZED
    elif raw_status in _REJECTED_ALIASES:
        status = AUTHORITY_REJECTED
    else:
        status = AUTHORITY_IN_PROCESS

    messages = data.get("messages") or []
    if isinstance(messages, str):
        messages = [messages]
    message = "; ".join(str(m) for m in messages if m) or str(data.get("message") or "")

    return AuthorityResponse(
        status=status,
        authorization_code=data.get("authorization_code") or None,
        authorized_at=_parse_datetime(data.get("authorized_at")),
        message=message,
    )


class HttpAuthorityGateway:
    def __init__(self, base_url: str, *, timeout: float = 30.0, client: httpx.Client | None = None) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def _request(self, method: str, path: str, **kwargs) -> AuthorityResponse:
        if not self.base_url:
            raise AuthorityUnavailableError("Authority gateway URL is not configured")
        try:
            response = self._client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise AuthorityUnavailableError(f"Could not reach the tax authority: {exc}") from exc

        if response.status_code == 404 and method == "GET":
            return AuthorityResponse(status=AUTHORITY_IN_PROCESS, message="Document not found at the authority")
        if response.status_code >= 400:
            raise AuthorityUnavailableError(f"Tax authority gateway answered HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise AuthorityUnavailableError("Tax authority gateway sent an unreadable answer") from exc
        if not isinstance(data, dict):
            raise AuthorityUnavailableError("Tax authority gateway sent an unexpected answer")
        return parse_authority_payload(data)

    def submit(self, signed_payload: str, access_key: str, environment: str) -> AuthorityResponse:
        return self._request(
            "POST",
            "/documents",
            json={"access_key": access_key, "environment": environment, "signed_payload": signed_payload},
        )

    def query(self, access_key: str, environment: str) -> AuthorityResponse:
        return self._request("GET", f"/documents/{access_key}", params={"environment": environment})
