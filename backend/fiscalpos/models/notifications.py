from __future__ import annotations

from ..extensions import db
from fiscalpos.time_utils import to_utc_z


DOC_SALE = "SALE"
DOC_CREDIT_NOTE = "CREDIT_NOTE"
VALID_DOCUMENT_TYPES = {DOC_SALE, DOC_CREDIT_NOTE}

NOTIFY_PENDING = "PENDING"
NOTIFY_FAILED = "FAILED"


class QueuedNotification(db.Model):
    """
    Deferred e-mail for an authorized document.

    One row per document. The sweep deletes the row on delivery; a row
    that exhausts its attempts stays as FAILED and is no longer swept.
    """
    __tablename__ = "queued_notifications"
    __table_args__ = (
        db.UniqueConstraint("document_type", "document_id", name="uq_queued_notifications_document"),
        db.Index("ix_queued_notifications_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(16), nullable=False)
    document_id = db.Column(db.Integer, nullable=False)
    address = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=NOTIFY_PENDING)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "document_id": self.document_id,
            "address": self.address,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "last_attempt_at": to_utc_z(self.last_attempt_at) if self.last_attempt_at else None,
        }
