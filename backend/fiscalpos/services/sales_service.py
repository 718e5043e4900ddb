"""
Sales Service - checkout

WHY: A sale is written once, atomically with its lines, from a priced cart.
After that only the fiscal columns and the notification flag ever change
(emission_service, notification_service).

INVARIANT: total_cents == subtotal_untaxed_cents + subtotal_taxed_cents + tax_cents
"""

from __future__ import annotations

from ..extensions import db
from ..models import Sale, SaleLine
from ..models.registers import CashSession, SESSION_OPEN
from ..models.sales import KIND_INVOICE, PAYMENT_CASH, VALID_DOCUMENT_KINDS, VALID_PAYMENT_METHODS
from fiscalpos import fiscal_state as fs
from fiscalpos.time_utils import utcnow
from .cart_service import Cart
from .concurrency import lock_for_update, run_with_retry
from .document_service import SALE_PREFIX, SALE_SEQUENCE, next_document_number
from .register_service import record_sale


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def validate_cart(cart: Cart) -> None:
    """Checks that need no database access; raises SaleError."""
    if cart.document_kind not in VALID_DOCUMENT_KINDS:
        raise SaleError("Invalid document kind", details={"document_kind": cart.document_kind})

    if not cart.lines:
        raise SaleError("Cannot check out an empty cart")

    problems = []
    for line in cart.lines:
        if line.quantity <= 0:
            problems.append({"product_id": line.product_id, "error": "quantity must be positive"})
        elif line.unit_price_cents < 0:
            problems.append({"product_id": line.product_id, "error": "price cannot be negative"})
        elif line.discount_cents < 0 or line.discount_cents > line.gross_cents:
            problems.append({"product_id": line.product_id, "error": "discount must be between 0 and the line amount"})
    if problems:
        raise SaleError("Invalid cart lines", details={"lines": problems})

    if cart.document_kind == KIND_INVOICE:
        customer = cart.customer
        if customer is None or not customer.can_receive_invoice:
            raise SaleError("An invoice requires a customer with an identification number")


def create_sale(
    user_id: int,
    cart: Cart,
    *,
    payment_method: str = PAYMENT_CASH,
    amount_tendered_cents: int | None = None,
    note: str | None = None,
) -> Sale:
    """
    Persist a cart as a sale inside the operator's open cash session.

    Invoices start UNSUBMITTED; receipts carry no fiscal state at all.
    """
    payment_method = (payment_method or PAYMENT_CASH).upper()
    if payment_method not in VALID_PAYMENT_METHODS:
        raise SaleError("Invalid payment method", details={"payment_method": payment_method})

    validate_cart(cart)
    totals = cart.totals()

    if amount_tendered_cents is None:
        amount_tendered_cents = totals.total_cents
    if amount_tendered_cents < 0:
        raise SaleError("Amount tendered cannot be negative")
    if payment_method == PAYMENT_CASH and amount_tendered_cents < totals.total_cents:
        raise SaleError(
            "Amount tendered is less than the total",
            details={"total_cents": totals.total_cents, "amount_tendered_cents": amount_tendered_cents},
        )

    def _op():
        cash_session = lock_for_update(
            db.session.query(CashSession).filter_by(user_id=user_id, status=SESSION_OPEN)
        ).first()
        if not cash_session:
            raise SaleError("Open a cash session before selling")

        sale = Sale(
            document_number=next_document_number(SALE_SEQUENCE, prefix=SALE_PREFIX),
            document_kind=cart.document_kind,
            customer_id=cart.customer.id if cart.customer else None,
            created_by_user_id=user_id,
            cash_session_id=cash_session.id,
            subtotal_untaxed_cents=totals.subtotal_untaxed_cents,
            subtotal_taxed_cents=totals.subtotal_taxed_cents,
            discount_cents=totals.discount_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            payment_method=payment_method,
            amount_tendered_cents=amount_tendered_cents,
            change_cents=max(amount_tendered_cents - totals.total_cents, 0),
            note=(note or "").strip() or None,
            created_at=utcnow(),
            fiscal_status=fs.UNSUBMITTED if cart.document_kind == KIND_INVOICE else None,
        )
        db.session.add(sale)
        db.session.flush()

        for line in cart.lines:
            db.session.add(SaleLine(
                sale_id=sale.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                discount_cents=line.discount_cents,
                tax_rate_bps=line.tax_rate_bps,
                subtotal_cents=line.subtotal_cents,
                tax_cents=line.tax_cents,
            ))

        record_sale(cash_session, sale)
        db.session.commit()
        return sale

    return run_with_retry(_op)


def get_sale(sale_id: int) -> Sale | None:
    return db.session.get(Sale, sale_id)
