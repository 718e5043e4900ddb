from __future__ import annotations

from ..extensions import db
from fiscalpos import fiscal_state as fs
from fiscalpos.time_utils import to_utc_z


class FiscalDocumentMixin:
    """
    Fiscal columns shared by sales (invoice kind) and credit notes.

    These columns are written only by the emission and notification
    services; everything else on the document is immutable after creation.
    """
    fiscal_status = db.Column(db.String(16), nullable=True, index=True)
    access_key = db.Column(db.String(49), nullable=True, unique=True)
    authorization_code = db.Column(db.String(64), nullable=True)
    authorized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    legal_number = db.Column(db.String(17), nullable=True)
    rejection_reason = db.Column(db.String(512), nullable=True)

    # Environment the current access key / legal number was issued under
    fiscal_environment = db.Column(db.String(16), nullable=True)

    # Signed payload kept while PENDING so a retry resends the same document
    signed_payload = db.Column(db.Text, nullable=True)

    notification_sent = db.Column(db.Boolean, nullable=False, default=False)

    @property
    def fiscal_state(self) -> fs.FiscalState | None:
        if self.fiscal_status is None:
            return None
        if self.fiscal_status == fs.AUTHORIZED:
            return fs.Authorized(
                authorization_code=self.authorization_code,
                access_key=self.access_key,
                legal_number=self.legal_number,
                authorized_at=self.authorized_at,
            )
        if self.fiscal_status == fs.PENDING:
            return fs.Pending(access_key=self.access_key, legal_number=self.legal_number)
        if self.fiscal_status == fs.REJECTED:
            return fs.Rejected(reason=self.rejection_reason or "")
        return fs.Unsubmitted()

    def apply_fiscal_state(self, state: fs.FiscalState) -> None:
        current = self.fiscal_status or fs.UNSUBMITTED
        if not fs.can_transition(current, state.status):
            raise fs.InvalidTransitionError(f"Cannot move fiscal state from {current} to {state.status}")

        self.fiscal_status = state.status
        if isinstance(state, fs.Authorized):
            self.authorization_code = state.authorization_code
            self.access_key = state.access_key
            self.legal_number = state.legal_number
            self.authorized_at = state.authorized_at
            self.rejection_reason = None
        elif isinstance(state, fs.Pending):
            self.access_key = state.access_key
            self.legal_number = state.legal_number
            self.rejection_reason = None
        elif isinstance(state, fs.Rejected):
            self.rejection_reason = state.reason[:512]
            self.signed_payload = None

    @property
    def is_authorized(self) -> bool:
        return self.fiscal_status == fs.AUTHORIZED

    def fiscal_dict(self) -> dict:
        return {
            "fiscal_status": self.fiscal_status,
            "access_key": self.access_key,
            "authorization_code": self.authorization_code,
            "authorized_at": to_utc_z(self.authorized_at) if self.authorized_at else None,
            "legal_number": self.legal_number,
            "rejection_reason": self.rejection_reason,
            "fiscal_environment": self.fiscal_environment,
            "notification_sent": self.notification_sent,
        }
