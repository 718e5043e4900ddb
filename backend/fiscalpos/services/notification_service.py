# Overview: E-mail of authorized documents with a durable retry queue.

"""
Notification Queue

send_or_queue() tries to deliver immediately. A transient failure stores
(or refreshes) one PENDING row for the document and answers
"DEFERRED:<reason>", which callers tell apart from a confirmation. An
address that cannot be valid is a hard failure and is never queued.

sweep() retries the oldest PENDING rows. Delivery deletes the row; each
failure counts an attempt, and a row reaching the maximum is kept as
FAILED and no longer swept. A new deferral of a FAILED document starts
its attempts over.

Only one sweep runs at a time per process; an overlapping call is skipped.
"""

from __future__ import annotations

import re
import threading
from html import escape

from flask import current_app

from ..extensions import db
from ..models import QueuedNotification
from ..models.notifications import DOC_CREDIT_NOTE, DOC_SALE, NOTIFY_FAILED, NOTIFY_PENDING
from fiscalpos.time_utils import utcnow
from .collaborators import get_mailer
from .concurrency import run_with_retry
from .document_service import get_document
from .fiscal_context import get_fiscal_settings
from .mailer import MailDeliveryError


DEFERRED_PREFIX = "DEFERRED:"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")

_sweep_lock = threading.Lock()


class NotificationError(Exception):
    """Hard notification failure (never queued)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def is_valid_address(address: str | None) -> bool:
    return bool(address) and bool(_EMAIL_RE.match(address.strip()))


def is_deferred(outcome: str) -> bool:
    return outcome.startswith(DEFERRED_PREFIX)


def _max_attempts() -> int:
    return int(current_app.config.get("NOTIFICATION_MAX_ATTEMPTS", 4))


def _compose(document_type: str, doc) -> tuple[str, str]:
    settings = get_fiscal_settings()
    business = settings.trade_name or settings.legal_name or "Our store"
    label = "Invoice" if document_type == DOC_SALE else "Credit note"
    subject = f"{label} {doc.legal_number} - {business}"
    html = (
        f"<p>{escape(business)}</p>"
        f"<p>{label} <strong>{escape(doc.legal_number or '')}</strong> has been authorized.</p>"
        f"<p>Access key: {escape(doc.access_key or '')}</p>"
        f"<p>Authorization: {escape(doc.authorization_code or '')}</p>"
        f"<p>Total: {doc.total_cents // 100}.{doc.total_cents % 100:02d}</p>"
    )
    return subject, html


def _deliver(document_type: str, doc, address: str) -> None:
    subject, html = _compose(document_type, doc)
    get_mailer().send(address, subject, html)


def _queued_row(document_type: str, document_id: int) -> QueuedNotification | None:
    return db.session.query(QueuedNotification).filter_by(
        document_type=document_type, document_id=document_id
    ).first()


def _default_address(document_type: str, doc) -> str | None:
    customer = doc.customer if document_type == DOC_SALE else (doc.customer or (doc.sale.customer if doc.sale else None))
    return customer.email if customer else None


def send_or_queue(document_type: str, document_id: int, address: str | None = None) -> str:
    """
    Returns a confirmation string, or "DEFERRED:<reason>" when queued.

    Raises NotificationError for hard failures (unknown or unauthorized
    document, invalid address).
    """
    if document_type not in (DOC_SALE, DOC_CREDIT_NOTE):
        raise NotificationError("Unknown document type", details={"document_type": document_type})

    doc = get_document(document_type, document_id)
    if doc is None:
        raise NotificationError("Document not found")
    if not doc.is_authorized:
        raise NotificationError("Only authorized documents can be sent")

    address = (address or _default_address(document_type, doc) or "").strip()
    if not is_valid_address(address):
        raise NotificationError("Invalid e-mail address", details={"address": address})

    try:
        _deliver(document_type, doc, address)
    except MailDeliveryError as exc:
        reason = str(exc) or "delivery failed"
        current_app.logger.warning("Deferring e-mail for %s %s: %s", document_type, document_id, reason)

        def _queue():
            row = _queued_row(document_type, document_id)
            if row is None:
                row = QueuedNotification(document_type=document_type, document_id=document_id, attempts=0)
                db.session.add(row)
            if row.status == NOTIFY_FAILED or row.attempts >= _max_attempts():
                row.attempts = 0
            row.address = address
            row.status = NOTIFY_PENDING
            row.last_error = reason[:512]
            db.session.commit()

        run_with_retry(_queue)
        return f"{DEFERRED_PREFIX}{reason}"

    def _mark_sent():
        doc.notification_sent = True
        row = _queued_row(document_type, document_id)
        if row is not None:
            db.session.delete(row)
        db.session.commit()

    run_with_retry(_mark_sent)
    return f"Sent to {address}"


def _sweep_batch(batch_size: int, max_attempts: int) -> dict:
    rows = (
        db.session.query(QueuedNotification)
        .filter(QueuedNotification.status == NOTIFY_PENDING, QueuedNotification.attempts < max_attempts)
        .order_by(QueuedNotification.created_at.asc(), QueuedNotification.id.asc())
        .limit(batch_size)
        .all()
    )

    sent = failed = 0
    for row in rows:
        doc = get_document(row.document_type, row.document_id)
        if doc is None:
            row.status = NOTIFY_FAILED
            row.last_error = "Document not found"
            db.session.commit()
            failed += 1
            continue
        if doc.notification_sent:
            db.session.delete(row)
            db.session.commit()
            sent += 1
            continue

        try:
            _deliver(row.document_type, doc, row.address)
        except MailDeliveryError as exc:
            row.attempts += 1
            row.last_error = (str(exc) or "delivery failed")[:512]
            row.last_attempt_at = utcnow()
            if row.attempts >= max_attempts:
                row.status = NOTIFY_FAILED
                current_app.logger.warning(
                    "Giving up e-mail for %s %s after %d attempts", row.document_type, row.document_id, row.attempts
                )
            db.session.commit()
            failed += 1
            continue

        doc.notification_sent = True
        db.session.delete(row)
        db.session.commit()
        sent += 1

    return {"total": len(rows), "sent": sent, "failed": failed}


def sweep(batch_size: int | None = None, max_attempts: int | None = None) -> dict | None:
    """
    Retry queued notifications. Returns {total, sent, failed}, or None when
    another sweep is still running.
    """
    if not _sweep_lock.acquire(blocking=False):
        return None
    try:
        config = current_app.config
        return _sweep_batch(
            batch_size or int(config.get("NOTIFICATION_SWEEP_BATCH_SIZE", 5)),
            max_attempts or _max_attempts(),
        )
    finally:
        _sweep_lock.release()


def pending_count() -> int:
    """Rows the sweep will still retry."""
    return db.session.query(QueuedNotification).filter(
        QueuedNotification.status == NOTIFY_PENDING,
        QueuedNotification.attempts < _max_attempts(),
    ).count()


def list_queue(include_failed: bool = True) -> list[QueuedNotification]:
    query = db.session.query(QueuedNotification)
    if not include_failed:
        query = query.filter_by(status=NOTIFY_PENDING)
    return query.order_by(QueuedNotification.created_at.asc(), QueuedNotification.id.asc()).all()


class NotificationSweeper:
    """
    Runs sweep() every interval seconds on a daemon thread.

    A tick that finds the previous sweep still running is skipped.
    """

    def __init__(self, app, interval: float):
        self.app = app
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="notification-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)

    def tick(self) -> dict | None:
        with self.app.app_context():
            try:
                result = sweep()
            except Exception:
                db.session.rollback()
                self.app.logger.exception("Notification sweep failed")
                return None
            finally:
                db.session.remove()
            if result is None:
                self.app.logger.debug("Previous notification sweep still running; skipped")
            elif result["total"]:
                self.app.logger.info("Notification sweep: %s", result)
            return result

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.tick()
