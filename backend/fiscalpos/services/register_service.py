"""
Cash Session Service

WHY: Cashier accountability. Each operator works inside an open cash
session; closing it compares counted cash against what the drawer should
hold and signs the operator out.

DESIGN PRINCIPLES:
- At most one OPEN session per operator
- Sessions are immutable once closed
- expected = opening + cash sales - expenses; difference = counted - expected
- Closing revokes every session token of the operator
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashSession, CreditNote, Expense, Sale
from ..models.registers import SESSION_CLOSED, SESSION_OPEN
from ..models.sales import PAYMENT_CASH, VALID_PAYMENT_METHODS
from fiscalpos import fiscal_state as fs
from fiscalpos.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .session_service import revoke_all_user_sessions


FORCED_SIGN_OUT_REASON = "Cash session closed"


class CashSessionError(Exception):
    """Raised for cash session errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass
class CloseSummary:
    session: CashSession
    expected_cents: int
    counted_cents: int
    difference_cents: int
    total_sales_cents: int
    sales_count: int
    cash_sales_cents: int
    expenses_cents: int
    credit_notes_cents: int
    sales_by_payment_method: dict = field(default_factory=dict)
    revoked_sessions: int = 0

    def to_dict(self) -> dict:
        return {
            "session": self.session.to_dict(),
            "expected_cents": self.expected_cents,
            "counted_cents": self.counted_cents,
            "difference_cents": self.difference_cents,
            "total_sales_cents": self.total_sales_cents,
            "sales_count": self.sales_count,
            "cash_sales_cents": self.cash_sales_cents,
            "expenses_cents": self.expenses_cents,
            "credit_notes_cents": self.credit_notes_cents,
            "sales_by_payment_method": self.sales_by_payment_method,
            "signed_out": self.revoked_sessions > 0,
        }


def get_open_session(user_id: int) -> CashSession | None:
    """The operator's OPEN session, if any."""
    return db.session.query(CashSession).filter_by(user_id=user_id, status=SESSION_OPEN).first()


def open_session(user_id: int, opening_cents: int, note: str | None = None) -> CashSession:
    """
    Open a cash session for an operator.

    Raises CashSessionError if the operator already has one open.
    """
    if opening_cents is None or opening_cents < 0:
        raise CashSessionError("Opening amount cannot be negative")

    def _op():
        existing = lock_for_update(
            db.session.query(CashSession).filter_by(user_id=user_id, status=SESSION_OPEN)
        ).first()
        if existing:
            raise CashSessionError(
                "A cash session is already open for this operator",
                details={"cash_session_id": existing.id},
            )

        session = CashSession(
            user_id=user_id,
            status=SESSION_OPEN,
            opening_cents=opening_cents,
            note=note,
            opened_at=utcnow(),
        )
        db.session.add(session)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise CashSessionError("A cash session is already open for this operator")
        return session

    return run_with_retry(_op)


def record_sale(session: CashSession, sale: Sale) -> None:
    """Add a sale to the running totals (caller commits)."""
    session.total_sales_cents += sale.total_cents
    session.sales_count += 1
    if sale.payment_method == PAYMENT_CASH:
        session.cash_sales_cents += sale.total_cents


def record_credit_note(credit_note: CreditNote) -> None:
    """Add an authorized credit note to its open session's running total (caller commits)."""
    if not credit_note.cash_session_id:
        return
    session = db.session.get(CashSession, credit_note.cash_session_id)
    if session is not None and session.status == SESSION_OPEN:
        session.credit_notes_cents += credit_note.total_cents


def record_expense(user_id: int, description: str, amount_cents: int, category: str | None = None) -> Expense:
    """
    Record a drawer pay-out, attached to the operator's open session if any.
    """
    description = (description or "").strip()
    if not description:
        raise CashSessionError("Expense description is required")
    if amount_cents is None or amount_cents <= 0:
        raise CashSessionError("Expense amount must be positive")

    def _op():
        session = lock_for_update(
            db.session.query(CashSession).filter_by(user_id=user_id, status=SESSION_OPEN)
        ).first()
        expense = Expense(
            cash_session_id=session.id if session else None,
            user_id=user_id,
            description=description,
            category=(category or "").strip() or None,
            amount_cents=amount_cents,
        )
        db.session.add(expense)
        if session:
            session.expenses_cents += amount_cents
        db.session.commit()
        return expense

    return run_with_retry(_op)


def _sales_by_payment_method(session_id: int) -> dict:
    rows = (
        db.session.query(Sale.payment_method, db.func.coalesce(db.func.sum(Sale.total_cents), 0))
        .filter(Sale.cash_session_id == session_id)
        .group_by(Sale.payment_method)
        .all()
    )
    totals = {method: 0 for method in sorted(VALID_PAYMENT_METHODS)}
    for method, total in rows:
        totals[method] = int(total)
    return totals


def close_session(user_id: int, counted_cents: int, note: str | None = None) -> CloseSummary:
    """
    Close the operator's open session and sign them out.

    Totals are recomputed from the stored sales and expenses, so the
    reported figures never depend on the running counters.
    Credit notes count only once authorized.
    """
    if counted_cents is None or counted_cents < 0:
        raise CashSessionError("Counted amount cannot be negative")

    def _op():
        session = lock_for_update(
            db.session.query(CashSession).filter_by(user_id=user_id, status=SESSION_OPEN)
        ).first()
        if not session:
            raise CashSessionError("No open cash session for this operator")

        by_method = _sales_by_payment_method(session.id)
        sales_count = db.session.query(db.func.count(Sale.id)).filter(Sale.cash_session_id == session.id).scalar() or 0
        expenses = int(
            db.session.query(db.func.coalesce(db.func.sum(Expense.amount_cents), 0))
            .filter(Expense.cash_session_id == session.id)
            .scalar()
        )
        credit_notes = int(
            db.session.query(db.func.coalesce(db.func.sum(CreditNote.total_cents), 0))
            .filter(CreditNote.cash_session_id == session.id, CreditNote.fiscal_status == fs.AUTHORIZED)
            .scalar()
        )

        cash_sales = by_method.get(PAYMENT_CASH, 0)
        expected = session.opening_cents + cash_sales - expenses
        difference = counted_cents - expected

        session.total_sales_cents = sum(by_method.values())
        session.sales_count = sales_count
        session.cash_sales_cents = cash_sales
        session.expenses_cents = expenses
        session.credit_notes_cents = credit_notes
        session.expected_cents = expected
        session.counted_cents = counted_cents
        session.difference_cents = difference
        if note:
            session.note = note
        session.status = SESSION_CLOSED
        session.closed_at = utcnow()

        revoked = revoke_all_user_sessions(user_id, FORCED_SIGN_OUT_REASON, commit=False)
        db.session.commit()

        return CloseSummary(
            session=session,
            expected_cents=expected,
            counted_cents=counted_cents,
            difference_cents=difference,
            total_sales_cents=session.total_sales_cents,
            sales_count=sales_count,
            cash_sales_cents=cash_sales,
            expenses_cents=expenses,
            credit_notes_cents=credit_notes,
            sales_by_payment_method=by_method,
            revoked_sessions=revoked,
        )

    return run_with_retry(_op)
