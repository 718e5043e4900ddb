"""
Notification queue tests.

Verifies:
- Immediate delivery marks the document as notified
- Transient failures are queued once per document and answer DEFERRED:
- Hard failures (bad address, unauthorized document) raise
- The sweep deletes delivered rows and gives up after the attempt limit
- A new deferral gives a FAILED row a fresh set of attempts
- Overlapping sweeps are skipped; the sweeper thread delivers on its timer
"""

import time

import pytest

from fiscalpos.models import QueuedNotification
from fiscalpos.models.notifications import DOC_SALE, NOTIFY_FAILED, NOTIFY_PENDING
from fiscalpos.services import emission_service, notification_service
from fiscalpos.services.notification_service import NotificationError, NotificationSweeper


@pytest.fixture
def authorized_invoice(invoice):
    emission_service.emit_invoice(invoice.id)
    return invoice


def _queued(db_session):
    return db_session.query(QueuedNotification).all()


class TestSendOrQueue:
    def test_immediate_delivery(self, db_session, authorized_invoice, mailer):
        outcome = notification_service.send_or_queue(DOC_SALE, authorized_invoice.id)

        assert outcome == "Sent to billing@acme.example"
        assert not notification_service.is_deferred(outcome)
        assert authorized_invoice.notification_sent is True
        assert mailer.sent[0]["to"] == "billing@acme.example"
        assert authorized_invoice.legal_number in mailer.sent[0]["subject"]
        assert _queued(db_session) == []

    def test_explicit_address_wins(self, authorized_invoice, mailer):
        outcome = notification_service.send_or_queue(DOC_SALE, authorized_invoice.id, "owner@shop.example")
        assert outcome == "Sent to owner@shop.example"

    def test_failure_is_deferred(self, db_session, authorized_invoice, mailer):
        mailer.fail_next("smtp timeout")

        outcome = notification_service.send_or_queue(DOC_SALE, authorized_invoice.id)

        assert outcome == "DEFERRED:smtp timeout"
        assert notification_service.is_deferred(outcome)
        assert notification_service.pending_count() == 1
        row = _queued(db_session)[0]
        assert row.attempts == 0
        assert row.status == NOTIFY_PENDING
        assert row.address == "billing@acme.example"
        assert not authorized_invoice.notification_sent

    def test_repeated_failure_keeps_one_row(self, db_session, authorized_invoice, mailer):
        mailer.fail_next("smtp timeout", "connection reset")

        notification_service.send_or_queue(DOC_SALE, authorized_invoice.id)
        notification_service.send_or_queue(DOC_SALE, authorized_invoice.id)

        rows = _queued(db_session)
        assert len(rows) == 1
        assert rows[0].last_error == "connection reset"

    def test_later_success_clears_queue(self, db_session, authorized_invoice, mailer):
        mailer.fail_next("smtp timeout")
        notification_service.send_or_queue(DOC_SALE, authorized_invoice.id)

        notification_service.send_or_queue(DOC_SALE, authorized_invoice.id)

        assert _queued(db_session) == []

    @pytest.mark.parametrize("address", ["not-an-address", "a@b", "two words@x.example"])
    def test_invalid_address_is_not_queued(self, db_session, authorized_invoice, mailer, address):
        with pytest.raises(NotificationError):
            notification_service.send_or_queue(DOC_SALE, authorized_invoice.id, address)
        assert _queued(db_session) == []
        assert mailer.sent == []

    def test_unauthorized_document_rejected(self, invoice):
        with pytest.raises(NotificationError):
            notification_service.send_or_queue(DOC_SALE, invoice.id)

    def test_unknown_document_rejected(self, db_session):
        with pytest.raises(NotificationError):
            notification_service.send_or_queue(DOC_SALE, 424242)


class TestSweep:
    def test_sweep_delivers_and_deletes(self, db_session, authorized_invoice, mailer):
        mailer.fail_next("smtp timeout")
        notification_service.send_or_queue(DOC_SALE, authorized_invoice.id)

        result = notification_service.sweep()

        assert result == {"total": 1, "sent": 1, "failed": 0}
        assert _queued(db_session) == []
        assert authorized_invoice.notification_sent is True
        assert len(mailer.sent) == 1

    def test_sweep_gives_up_after_max_attempts(self, db_session, authorized_invoice, mailer):
        mailer.fail_next("down", "down", "down", "down")
        notification_service.send_or_queue(DOC_SALE, authorized_invoice.id)

        for expected_attempts in (1, 2):
            result = notification_service.sweep()
            assert result["failed"] == 1
            assert _queued(db_session)[0].attempts == expected_attempts
            assert _queued(db_session)[0].status == NOTIFY_PENDING

        notification_service.sweep()
        row = _queued(db_session)[0]
        assert row.attempts == 3
        assert row.status == NOTIFY_FAILED
        assert notification_service.pending_count() == 0

        assert notification_service.sweep()["total"] == 0

    def test_failed_row_is_retried_after_new_deferral(self, db_session, authorized_invoice, mailer):
        mailer.fail_next("down", "down", "down", "down", "again")
        notification_service.send_or_queue(DOC_SALE, authorized_invoice.id)
        for _ in range(3):
            notification_service.sweep()
        assert _queued(db_session)[0].status == NOTIFY_FAILED
        assert notification_service.pending_count() == 0

        outcome = notification_service.send_or_queue(DOC_SALE, authorized_invoice.id)

        assert outcome == "DEFERRED:again"
        row = _queued(db_session)[0]
        assert row.status == NOTIFY_PENDING
        assert row.attempts == 0
        assert notification_service.pending_count() == 1

        assert notification_service.sweep() == {"total": 1, "sent": 1, "failed": 0}
        assert _queued(db_session) == []
        assert authorized_invoice.notification_sent is True

    def test_sweep_respects_batch_size(self, db_session, make_sale, customer, fiscal_ready, mailer):
        for _ in range(3):
            sale = make_sale(customer=customer, document_kind="INVOICE")
            emission_service.emit_invoice(sale.id)
            mailer.fail_next("smtp timeout")
            notification_service.send_or_queue(DOC_SALE, sale.id)

        result = notification_service.sweep(batch_size=2)

        assert result["total"] == 2
        assert notification_service.pending_count() == 1

    def test_overlapping_sweep_is_skipped(self, db_session):
        assert notification_service._sweep_lock.acquire(blocking=False)
        try:
            assert notification_service.sweep() is None
        finally:
            notification_service._sweep_lock.release()

    def test_sweeper_tick_on_empty_queue(self, app, db_session):
        sweeper = NotificationSweeper(app, 60)
        assert sweeper.tick() == {"total": 0, "sent": 0, "failed": 0}

    def test_sweeper_tick_skipped_while_sweep_running(self, app, db_session):
        sweeper = NotificationSweeper(app, 60)
        assert notification_service._sweep_lock.acquire(blocking=False)
        try:
            assert sweeper.tick() is None
        finally:
            notification_service._sweep_lock.release()

    def test_sweeper_thread_delivers_queued_mail(self, app, db_session, authorized_invoice, mailer):
        mailer.fail_next("smtp timeout")
        notification_service.send_or_queue(DOC_SALE, authorized_invoice.id)
        assert mailer.sent == []

        sweeper = NotificationSweeper(app, 0.05)
        sweeper.start()
        try:
            deadline = time.monotonic() + 5
            while not mailer.sent and time.monotonic() < deadline:
                time.sleep(0.02)
        finally:
            sweeper.stop(timeout=5)

        assert not sweeper._thread.is_alive()
        assert mailer.sent[0]["to"] == "billing@acme.example"
        db_session.expire_all()
        assert _queued(db_session) == []
        assert notification_service.pending_count() == 0
