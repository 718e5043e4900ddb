"""
Outbound e-mail through the mail service.

    POST {base}/send-email  {"to", "subject", "html"}
"""

from __future__ import annotations

import httpx


class MailDeliveryError(Exception):
    """Delivery failed; the message may be retried later."""
    pass


class HttpMailer:
    def __init__(self, base_url: str, api_key: str = "", *, timeout: float = 30.0, client: httpx.Client | None = None) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, to: str, subject: str, html: str) -> None:
        if not self.base_url:
            raise MailDeliveryError("E-mail service URL is not configured")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = self._client.post(
                f"{self.base_url}/send-email",
                json={"to": to, "subject": subject, "html": html},
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise MailDeliveryError(f"E-mail service answered HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise MailDeliveryError(f"E-mail service unavailable: {exc}") from exc
