from __future__ import annotations

from ..extensions import db
from .mixins import FiscalDocumentMixin
from fiscalpos.time_utils import to_utc_z


class CreditNote(FiscalDocumentMixin, db.Model):
    """
    Partial or total reversal of an authorized invoice.

    WHY: Authorized invoices cannot be edited or voided locally; the legal
    way to undo them is a credit note authorized by the same authority.

    RULES:
    - Created only from an AUTHORIZED invoice sale
    - At most one credit note per sale (uq_credit_notes_sale)
    - Never deleted; only its fiscal columns change after creation
    """
    __tablename__ = "credit_notes"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_credit_notes_sale"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=True, index=True)

    reason = db.Column(db.String(255), nullable=False)

    subtotal_untaxed_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_taxed_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Sale", backref=db.backref("credit_note", uselist=False, lazy=True))
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "sale_id": self.sale_id,
            "sale_legal_number": self.sale.legal_number if self.sale else None,
            "customer_id": self.customer_id,
            "created_by_user_id": self.created_by_user_id,
            "cash_session_id": self.cash_session_id,
            "reason": self.reason,
            "subtotal_untaxed_cents": self.subtotal_untaxed_cents,
            "subtotal_taxed_cents": self.subtotal_taxed_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        data.update(self.fiscal_dict())
        return data


class CreditNoteLine(db.Model):
    """Selected portion of one original sale line."""
    __tablename__ = "credit_note_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    credit_note_id = db.Column(db.Integer, db.ForeignKey("credit_notes.id"), nullable=False, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)

    credit_note = db.relationship("CreditNote", backref=db.backref("lines", lazy=True, order_by="CreditNoteLine.id"))
    sale_line = db.relationship("SaleLine")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_note_id": self.credit_note_id,
            "sale_line_id": self.sale_line_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
        }
