"""
Quota / subscription guard tests.

Order: trial allowance, then the offline grace window, then the plan.
"""

from datetime import date, timedelta

import pytest

from fiscalpos.models import SubscriptionState
from fiscalpos.models.fiscal import PLAN_DOCUMENT_PACKAGE, PLAN_LIFETIME, PLAN_TIME_BOUND, PLAN_TRIAL
from fiscalpos.services import quota_service
from fiscalpos.services.quota_service import (
    REASON_CANNOT_VERIFY,
    REASON_PACKAGE_EXHAUSTED,
    REASON_SUBSCRIPTION_EXPIRED,
    REASON_TRIAL_EXHAUSTED,
    QuotaDeniedError,
)
from fiscalpos.services.subscription_client import SubscriptionInfo
from fiscalpos.time_utils import today


TODAY = date(2026, 3, 10)


def _state(used=5, authorized=False, plan=PLAN_TRIAL, **fields):
    fields.setdefault("last_validated_on", TODAY)
    return SubscriptionState(free_invoices_used=used, is_authorized=authorized, plan_kind=plan, **fields)


def _evaluate(state, allowance=5, grace=7):
    return quota_service.evaluate(state, allowance, TODAY, grace)


class TestEvaluate:
    def test_trial_exhausted_at_allowance(self):
        decision = _evaluate(_state(used=5))
        assert not decision.allowed
        assert decision.reason == REASON_TRIAL_EXHAUSTED
        assert "5 of 5" in decision.message

    def test_trial_allows_below_allowance(self):
        decision = _evaluate(_state(used=4))
        assert decision.allowed
        assert decision.trial

    def test_trial_wins_over_expired_plan(self):
        state = _state(used=0, authorized=True, plan=PLAN_TIME_BOUND, expires_on=TODAY - timedelta(days=30))
        assert _evaluate(state).allowed

    def test_lifetime_allows(self):
        assert _evaluate(_state(authorized=True, plan=PLAN_LIFETIME)).allowed

    @pytest.mark.parametrize("remaining,allowed", [(3, True), (1, True), (0, False), (None, False)])
    def test_document_package(self, remaining, allowed):
        decision = _evaluate(_state(authorized=True, plan=PLAN_DOCUMENT_PACKAGE, remaining_documents=remaining))
        assert decision.allowed is allowed
        if not allowed:
            assert decision.reason == REASON_PACKAGE_EXHAUSTED

    @pytest.mark.parametrize(
        "expires_on,allowed",
        [(TODAY + timedelta(days=1), True), (TODAY, True), (TODAY - timedelta(days=1), False)],
    )
    def test_time_bound(self, expires_on, allowed):
        decision = _evaluate(_state(authorized=True, plan=PLAN_TIME_BOUND, expires_on=expires_on))
        assert decision.allowed is allowed
        if not allowed:
            assert decision.reason == REASON_SUBSCRIPTION_EXPIRED

    def test_unauthorized_plan_is_trial_exhausted(self):
        decision = _evaluate(_state(authorized=False, plan=PLAN_LIFETIME))
        assert decision.reason == REASON_TRIAL_EXHAUSTED

    def test_stale_validation_cannot_verify(self):
        stale = _state(authorized=True, plan=PLAN_LIFETIME, last_validated_on=TODAY - timedelta(days=8))
        decision = _evaluate(stale)
        assert not decision.allowed
        assert decision.reason == REASON_CANNOT_VERIFY

    def test_validation_inside_grace_window(self):
        recent = _state(authorized=True, plan=PLAN_LIFETIME, last_validated_on=TODAY - timedelta(days=7))
        assert _evaluate(recent).allowed

    def test_never_validated_plan_cannot_verify(self):
        decision = _evaluate(_state(authorized=True, plan=PLAN_LIFETIME, last_validated_on=None))
        assert decision.reason == REASON_CANNOT_VERIFY


class TestStoredState:
    def test_configured_allowance(self, db_session):
        db_session.add(SubscriptionState(free_invoices_used=4))
        db_session.commit()
        assert quota_service.can_emit_invoice().allowed

        quota_service.get_subscription_state().free_invoices_used = 5
        db_session.commit()
        with pytest.raises(QuotaDeniedError) as excinfo:
            quota_service.ensure_can_emit_invoice()
        assert excinfo.value.reason == REASON_TRIAL_EXHAUSTED

    def test_per_machine_allowance_override(self, db_session):
        db_session.add(SubscriptionState(free_invoices_used=5, free_invoice_allowance=10))
        db_session.commit()
        assert quota_service.can_emit_invoice().allowed

    def test_refresh_caches_package_plan(self, db_session, subscription_server):
        subscription_server.info = SubscriptionInfo(
            authorized=True, plan_kind=PLAN_DOCUMENT_PACKAGE, remaining_documents=20, message="Package 50"
        )
        status = quota_service.refresh_subscription()

        assert status["offline"] is False
        assert status["plan_kind"] == PLAN_DOCUMENT_PACKAGE
        assert status["remaining_documents"] == 20
        assert status["expires_on"] is None
        assert status["last_validated_on"] == today().isoformat()

    def test_refresh_caches_time_bound_plan(self, db_session, subscription_server):
        expires = today() + timedelta(days=30)
        subscription_server.info = SubscriptionInfo(
            authorized=True, plan_kind=PLAN_TIME_BOUND, expires_on=expires, remaining_documents=99
        )
        status = quota_service.refresh_subscription()
        assert status["expires_on"] == expires.isoformat()
        assert status["remaining_documents"] is None

    def test_offline_refresh_keeps_cached_state(self, db_session, subscription_server):
        db_session.add(SubscriptionState(
            free_invoices_used=5,
            is_authorized=True,
            plan_kind=PLAN_LIFETIME,
            last_validated_on=today() - timedelta(days=2),
        ))
        db_session.commit()
        subscription_server.offline = True

        status = quota_service.refresh_subscription()

        assert status["offline"] is True
        assert status["plan_kind"] == PLAN_LIFETIME
        assert status["can_emit"] is True

    def test_status_reports_denial_message(self, db_session):
        db_session.add(SubscriptionState(free_invoices_used=5))
        db_session.commit()
        status = quota_service.subscription_status()
        assert status["can_emit"] is False
        assert status["reason"] == REASON_TRIAL_EXHAUSTED
        assert status["free_invoice_allowance"] == 5
        assert "Purchase a plan" in status["message"]
