"""
Subscription server client.

    POST {base}/validate-subscription  {"machine_id"}                 -> plan details
    POST {base}/consume-document       {"machine_id", "access_key"}   -> {"ok", "remaining_documents"}
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

import httpx

from ..models.fiscal import PLAN_DOCUMENT_PACKAGE, PLAN_LIFETIME, PLAN_TIME_BOUND, PLAN_TRIAL
from fiscalpos.time_utils import parse_iso_date


# Plan names used by the server, mapped to plan kinds
PLAN_ALIASES = {
    "lifetime": PLAN_LIFETIME,
    "monthly": PLAN_TIME_BOUND,
    "semiannual": PLAN_TIME_BOUND,
    "annual": PLAN_TIME_BOUND,
    "time_bound": PLAN_TIME_BOUND,
    "package": PLAN_DOCUMENT_PACKAGE,
    "document_package": PLAN_DOCUMENT_PACKAGE,
    "trial": PLAN_TRIAL,
}


class SubscriptionUnavailableError(Exception):
    """The subscription server could not be reached or gave no usable answer."""
    pass


@dataclass(frozen=True)
class SubscriptionInfo:
    authorized: bool
    plan_kind: str
    expires_on: date | None = None
    remaining_documents: int | None = None
    message: str = ""


def plan_kind_from(raw: str | None, *, lifetime: bool = False) -> str:
    if lifetime:
        return PLAN_LIFETIME
    return PLAN_ALIASES.get((raw or "").strip().lower(), PLAN_TRIAL)


class HttpSubscriptionClient:
    def __init__(self, base_url: str, api_key: str = "", *, timeout: float = 10.0, client: httpx.Client | None = None) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self._client = client or httpx.Client(timeout=timeout)

    def _post(self, path: str, body: dict) -> dict:
        if not self.base_url:
            raise SubscriptionUnavailableError("Subscription server URL is not configured")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = self._client.post(f"{self.base_url}{path}", json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise SubscriptionUnavailableError(str(exc)) from exc
        except ValueError as exc:
            raise SubscriptionUnavailableError("Unreadable answer from subscription server") from exc
        if not isinstance(data, dict):
            raise SubscriptionUnavailableError("Unexpected answer from subscription server")
        return data

    def validate(self, machine_id: str) -> SubscriptionInfo:
        data = self._post("/validate-subscription", {"machine_id": machine_id})
        authorized = bool(data.get("authorized"))
        plan_kind = plan_kind_from(data.get("plan"), lifetime=bool(data.get("lifetime")))
        remaining = data.get("remaining_documents")
        return SubscriptionInfo(
            authorized=authorized,
            plan_kind=plan_kind,
            expires_on=parse_iso_date(data.get("expires_on")) if plan_kind == PLAN_TIME_BOUND else None,
            remaining_documents=int(remaining) if remaining is not None and plan_kind == PLAN_DOCUMENT_PACKAGE else None,
            message=data.get("message") or ("Subscription active" if authorized else "No active subscription"),
        )

    def consume_document(self, machine_id: str, access_key: str) -> int:
        """Returns the remaining document count after consuming one."""
        data = self._post("/consume-document", {"machine_id": machine_id, "access_key": access_key})
        if not data.get("ok"):
            raise SubscriptionUnavailableError("The server refused to consume a document")
        return int(data.get("remaining_documents") or 0)
