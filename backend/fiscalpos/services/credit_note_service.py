"""
Credit Note Service

WHY: An authorized invoice cannot be edited or voided; it is reversed, in
part or in full, by a credit note that goes through the same
authorization as the invoice.

RULES:
- Source sale must be an AUTHORIZED invoice
- One credit note per sale; a second attempt is refused before anything
  reaches the tax authority
- 0 < quantity <= original quantity for every selected line
- Reason is mandatory
- Line subtotal = quantity * unit price - proportional share of the line
  discount; tax per line at the line's own rate
- Credited subtotals never exceed the selected original line subtotals
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CreditNote, CreditNoteLine, Sale, SaleLine
from ..models.registers import CashSession, SESSION_OPEN
from fiscalpos import fiscal_state as fs
from fiscalpos.time_utils import utcnow
from .cart_service import compute_line_tax, summarize_lines, to_whole_number
from .concurrency import lock_for_update, run_with_retry
from .document_service import CREDIT_NOTE_PREFIX, CREDIT_NOTE_SEQUENCE, next_document_number


class CreditNoteError(Exception):
    """Raised for credit note validation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class DuplicateCreditNoteError(CreditNoteError):
    pass


def proportional_discount(line: SaleLine, quantity: int) -> int:
    """Share of the line discount for quantity units, rounded half-up."""
    if quantity >= line.quantity:
        return line.discount_cents
    return (line.discount_cents * quantity * 2 + line.quantity) // (line.quantity * 2)


def _existing_credit_note(sale_id: int) -> CreditNote | None:
    return db.session.query(CreditNote).filter_by(sale_id=sale_id).first()


def check_eligibility(sale_id: int) -> dict:
    """Whether a credit note can be made for the sale, and for what."""
    sale = db.session.get(Sale, sale_id)
    if not sale:
        return {"eligible": False, "reason": "Sale not found", "lines": []}

    reason = None
    if not sale.is_invoice:
        reason = "Only invoices can be credited"
    elif not sale.is_authorized:
        reason = "The invoice is not authorized"
    else:
        existing = _existing_credit_note(sale.id)
        if existing:
            reason = f"Credit note {existing.document_number} already exists for this sale"

    return {
        "eligible": reason is None,
        "reason": reason,
        "sale_id": sale.id,
        "legal_number": sale.legal_number,
        "lines": [line.to_dict() for line in sale.lines],
    }


def _build_lines(sale: Sale, items: list[dict]) -> list[CreditNoteLine]:
    lines_by_id = {line.id: line for line in sale.lines}
    seen: set[int] = set()
    built: list[CreditNoteLine] = []

    for item in items:
        try:
            sale_line_id = to_whole_number(item["sale_line_id"])
            quantity = to_whole_number(item["quantity"])
        except (KeyError, TypeError, ValueError):
            raise CreditNoteError("Each item needs a whole-number sale_line_id and quantity", details={"item": item})

        original = lines_by_id.get(sale_line_id)
        if original is None:
            raise CreditNoteError("Line does not belong to this sale", details={"sale_line_id": sale_line_id})
        if sale_line_id in seen:
            raise CreditNoteError("Line selected twice", details={"sale_line_id": sale_line_id})
        if quantity <= 0 or quantity > original.quantity:
            raise CreditNoteError(
                "Quantity must be between 1 and the quantity sold",
                details={"sale_line_id": sale_line_id, "quantity": quantity, "max_quantity": original.quantity},
            )
        seen.add(sale_line_id)

        discount = proportional_discount(original, quantity)
        subtotal = quantity * original.unit_price_cents - discount
        built.append(CreditNoteLine(
            sale_line_id=original.id,
            product_id=original.product_id,
            quantity=quantity,
            unit_price_cents=original.unit_price_cents,
            discount_cents=discount,
            tax_rate_bps=original.tax_rate_bps,
            subtotal_cents=subtotal,
            tax_cents=compute_line_tax(subtotal, original.tax_rate_bps),
        ))

    credited_subtotal = sum(line.subtotal_cents for line in built)
    original_subtotal = sum(lines_by_id[line.sale_line_id].subtotal_cents for line in built)
    credited_total = credited_subtotal + sum(line.tax_cents for line in built)
    original_total = sum(lines_by_id[line.sale_line_id].total_cents for line in built)
    if credited_subtotal > original_subtotal or credited_total > original_total:
        raise CreditNoteError("Credit note exceeds the selected invoice lines")

    return built


def create_credit_note(user_id: int, sale_id: int, items: list[dict], reason: str) -> CreditNote:
    """
    Validate and store a credit note in UNSUBMITTED state.

    Emission is a separate step (emission_service.emit_credit_note).
    """
    reason = (reason or "").strip()
    if not reason:
        raise CreditNoteError("A reason is required")
    if not items:
        raise CreditNoteError("Select at least one line to credit")

    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise CreditNoteError("Sale not found")
        if not sale.is_invoice or sale.fiscal_status != fs.AUTHORIZED:
            raise CreditNoteError("Credit notes can only be made from an authorized invoice")

        existing = _existing_credit_note(sale.id)
        if existing:
            raise DuplicateCreditNoteError(
                "A credit note already exists for this sale",
                details={"credit_note_id": existing.id, "document_number": existing.document_number},
            )

        lines = _build_lines(sale, items)
        totals = summarize_lines(lines)
        cash_session = db.session.query(CashSession).filter_by(user_id=user_id, status=SESSION_OPEN).first()

        credit_note = CreditNote(
            document_number=next_document_number(CREDIT_NOTE_SEQUENCE, prefix=CREDIT_NOTE_PREFIX),
            sale_id=sale.id,
            customer_id=sale.customer_id,
            created_by_user_id=user_id,
            cash_session_id=cash_session.id if cash_session else None,
            reason=reason[:255],
            subtotal_untaxed_cents=totals.subtotal_untaxed_cents,
            subtotal_taxed_cents=totals.subtotal_taxed_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            created_at=utcnow(),
            fiscal_status=fs.UNSUBMITTED,
        )
        db.session.add(credit_note)
        db.session.flush()
        for line in lines:
            line.credit_note_id = credit_note.id
            db.session.add(line)

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateCreditNoteError("A credit note already exists for this sale")
        return credit_note

    return run_with_retry(_op)


def get_credit_note(credit_note_id: int) -> CreditNote | None:
    return db.session.get(CreditNote, credit_note_id)
