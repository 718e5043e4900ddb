# Overview: Trial allowance and subscription plans that gate invoice emission.

"""
Quota / Subscription Guard

WHY: Issuing an invoice that the subscription backend will refuse wastes
an authority round-trip. can_emit_invoice() answers locally from the
cached SubscriptionState; it is advisory, the subscription server keeps
the authoritative count.

EVALUATION ORDER:
1. free_invoices_used < allowance          -> allow (trial)
2. cached plan older than the offline grace -> deny (cannot verify)
3. authorized plan:
     LIFETIME          -> allow
     DOCUMENT_PACKAGE  -> allow iff remaining_documents > 0
     TIME_BOUND        -> allow iff today <= expires_on
4. otherwise                                -> deny (trial exhausted)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app

from ..extensions import db
from ..models import SubscriptionState
from ..models.fiscal import PLAN_DOCUMENT_PACKAGE, PLAN_LIFETIME, PLAN_TIME_BOUND, PLAN_TRIAL
from fiscalpos.time_utils import days_between, today
from .collaborators import get_subscription_client
from .concurrency import get_singleton, run_with_retry
from .subscription_client import SubscriptionUnavailableError


REASON_TRIAL_EXHAUSTED = "TRIAL_EXHAUSTED"
REASON_PACKAGE_EXHAUSTED = "PACKAGE_EXHAUSTED"
REASON_SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
REASON_CANNOT_VERIFY = "CANNOT_VERIFY"


class QuotaDeniedError(Exception):
    """Invoice emission is not allowed by the trial or the current plan."""
    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason
        self.details = {"reason": reason}


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: str | None = None
    message: str = ""
    trial: bool = False


def _allowance(state: SubscriptionState) -> int:
    if state.free_invoice_allowance is not None:
        return state.free_invoice_allowance
    return int(current_app.config.get("FREE_INVOICE_ALLOWANCE", 10))


def get_subscription_state(*, lock: bool = False) -> SubscriptionState:
    return get_singleton(SubscriptionState, lock=lock)


def evaluate(state: SubscriptionState, allowance: int, on: date, grace_days: int) -> QuotaDecision:
    """Pure decision over a state snapshot."""
    if state.free_invoices_used < allowance:
        left = allowance - state.free_invoices_used
        return QuotaDecision(True, message=f"Free trial: {left} of {allowance} invoices left", trial=True)

    if state.is_authorized and state.plan_kind != PLAN_TRIAL:
        if state.last_validated_on is None or days_between(state.last_validated_on, on) > grace_days:
            return QuotaDecision(
                False,
                REASON_CANNOT_VERIFY,
                "Cannot verify subscription. Connect to the internet and refresh the subscription status.",
            )

        if state.plan_kind == PLAN_LIFETIME:
            return QuotaDecision(True, message="Lifetime plan")

        if state.plan_kind == PLAN_DOCUMENT_PACKAGE:
            remaining = state.remaining_documents or 0
            if remaining > 0:
                return QuotaDecision(True, message=f"{remaining} documents left in package")
            return QuotaDecision(
                False,
                REASON_PACKAGE_EXHAUSTED,
                "Document package exhausted. Purchase a new package to continue invoicing.",
            )

        if state.plan_kind == PLAN_TIME_BOUND:
            if state.expires_on is not None and on <= state.expires_on:
                return QuotaDecision(True, message=f"Subscription active until {state.expires_on.isoformat()}")
            expired_on = state.expires_on.isoformat() if state.expires_on else "an unknown date"
            return QuotaDecision(
                False,
                REASON_SUBSCRIPTION_EXPIRED,
                f"Subscription expired on {expired_on}. Renew it to continue invoicing.",
            )

    return QuotaDecision(
        False,
        REASON_TRIAL_EXHAUSTED,
        f"Free trial exhausted ({state.free_invoices_used} of {allowance} invoices used). "
        "Purchase a plan to continue invoicing.",
    )


def can_emit_invoice(on: date | None = None) -> QuotaDecision:
    state = get_subscription_state()
    return evaluate(
        state,
        _allowance(state),
        on or today(),
        int(current_app.config.get("SUBSCRIPTION_OFFLINE_GRACE_DAYS", 7)),
    )


def ensure_can_emit_invoice() -> QuotaDecision:
    decision = can_emit_invoice()
    if not decision.allowed:
        raise QuotaDeniedError(decision.message, decision.reason)
    return decision


def record_authorized_invoice() -> bool:
    """
    Count one authorized invoice; call inside the transaction that moves
    the invoice into AUTHORIZED (caller commits).

    Returns True when the invoice falls outside the trial and the plan is
    a document package, i.e. the server must be told to consume one.
    """
    state = get_subscription_state(lock=True)
    beyond_trial = state.free_invoices_used >= _allowance(state)
    state.free_invoices_used += 1
    return beyond_trial and state.plan_kind == PLAN_DOCUMENT_PACKAGE


def consume_package_document(access_key: str) -> int | None:
    """
    Report one consumed document to the subscription server and cache the
    remaining count. Failures are logged and swallowed: the invoice is
    already authorized.
    """
    try:
        remaining = get_subscription_client().consume_document(current_app.config["MACHINE_ID"], access_key)
    except SubscriptionUnavailableError as exc:
        current_app.logger.warning("Could not report consumed document %s: %s", access_key, exc)
        return None

    def _op():
        state = get_subscription_state(lock=True)
        state.remaining_documents = remaining
        db.session.commit()
        return remaining

    return run_with_retry(_op)


def refresh_subscription() -> dict:
    """
    Re-validate against the subscription server and cache the answer.

    When the server is unreachable the cached state stays as it is; the
    guard keeps honoring it until the offline grace window runs out.
    """
    offline = False
    try:
        info = get_subscription_client().validate(current_app.config["MACHINE_ID"])
    except SubscriptionUnavailableError as exc:
        current_app.logger.warning("Subscription server unreachable, using cached state: %s", exc)
        offline = True
    else:
        def _op():
            state = get_subscription_state(lock=True)
            state.is_authorized = info.authorized
            state.plan_kind = info.plan_kind
            state.expires_on = info.expires_on if info.plan_kind == PLAN_TIME_BOUND else None
            state.remaining_documents = info.remaining_documents if info.plan_kind == PLAN_DOCUMENT_PACKAGE else None
            state.message = (info.message or "")[:255]
            state.last_validated_on = today()
            db.session.commit()

        run_with_retry(_op)

    status = subscription_status()
    status["offline"] = offline
    return status


def subscription_status() -> dict:
    """
    Quota query: authorized flag, plan kind, expiry or remaining documents
    (only the one matching the plan), trial counts, and the reason text
    when emission would be denied.
    """
    state = get_subscription_state()
    decision = can_emit_invoice()
    return {
        "authorized": state.is_authorized,
        "plan_kind": state.plan_kind,
        "expires_on": state.expires_on.isoformat() if state.plan_kind == PLAN_TIME_BOUND and state.expires_on else None,
        "remaining_documents": state.remaining_documents if state.plan_kind == PLAN_DOCUMENT_PACKAGE else None,
        "free_invoices_used": state.free_invoices_used,
        "free_invoice_allowance": _allowance(state),
        "last_validated_on": state.last_validated_on.isoformat() if state.last_validated_on else None,
        "can_emit": decision.allowed,
        "reason": decision.reason,
        "message": decision.message if not decision.allowed else (state.message or decision.message),
    }
