from __future__ import annotations

from ..extensions import db
from fiscalpos.time_utils import to_utc_z


SESSION_OPEN = "OPEN"
SESSION_CLOSED = "CLOSED"


class CashSession(db.Model):
    """
    Operator cash session (shift).

    LIFECYCLE:
    - OPEN: sales and expenses accumulate into the running totals
    - CLOSED: counted cash recorded, difference calculated, operator signed out

    IMMUTABLE: Once closed, a session cannot be reopened or modified.
    At most one OPEN session per operator (partial unique index).
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_sessions_user_open",
            "user_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)

    # Cash tracking (all amounts in cents)
    opening_cents = db.Column(db.Integer, nullable=False, default=0)
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_count = db.Column(db.Integer, nullable=False, default=0)
    cash_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    expenses_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_notes_cents = db.Column(db.Integer, nullable=False, default=0)

    # Calculated when closing
    expected_cents = db.Column(db.Integer, nullable=True)  # opening + cash sales - expenses
    counted_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    note = db.Column(db.Text, nullable=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("cash_sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "opening_cents": self.opening_cents,
            "total_sales_cents": self.total_sales_cents,
            "sales_count": self.sales_count,
            "cash_sales_cents": self.cash_sales_cents,
            "expenses_cents": self.expenses_cents,
            "credit_notes_cents": self.credit_notes_cents,
            "expected_cents": self.expected_cents,
            "counted_cents": self.counted_cents,
            "difference_cents": self.difference_cents,
            "note": self.note,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }


class Expense(db.Model):
    """Cash paid out of the drawer (supplies, services, petty cash)."""
    __tablename__ = "expenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    description = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    cash_session = db.relationship("CashSession", backref=db.backref("expenses", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_session_id": self.cash_session_id,
            "user_id": self.user_id,
            "description": self.description,
            "category": self.category,
            "amount_cents": self.amount_cents,
            "created_at": to_utc_z(self.created_at),
        }
