from __future__ import annotations

from ..extensions import db
from .mixins import FiscalDocumentMixin
from fiscalpos.time_utils import to_utc_z


KIND_RECEIPT = "RECEIPT"
KIND_INVOICE = "INVOICE"
VALID_DOCUMENT_KINDS = {KIND_RECEIPT, KIND_INVOICE}

PAYMENT_CASH = "CASH"
PAYMENT_CARD = "CARD"
PAYMENT_TRANSFER = "TRANSFER"
PAYMENT_CREDIT = "CREDIT"
VALID_PAYMENT_METHODS = {PAYMENT_CASH, PAYMENT_CARD, PAYMENT_TRANSFER, PAYMENT_CREDIT}


class Sale(FiscalDocumentMixin, db.Model):
    """
    Completed sale: either an informal receipt or an invoice.

    WHY: The sale is created atomically with its lines at checkout and is
    immutable afterwards. Only the fiscal columns (FiscalDocumentMixin) and
    the notification flag change later, and only through the emission and
    notification services. Sales are never deleted; a credit note reverses
    one logically.

    INVARIANT: total_cents == subtotal_untaxed_cents + subtotal_taxed_cents + tax_cents
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_kind_fiscal_status", "document_kind", "fiscal_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Internal sequence number (e.g., "NV-000000017")
    document_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    document_kind = db.Column(db.String(16), nullable=False, default=KIND_RECEIPT)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=True, index=True)

    # Totals (all amounts in cents)
    subtotal_untaxed_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_taxed_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, default=PAYMENT_CASH)
    amount_tendered_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    created_by = db.relationship("User", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_invoice(self) -> bool:
        return self.document_kind == KIND_INVOICE

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "document_kind": self.document_kind,
            "customer_id": self.customer_id,
            "created_by_user_id": self.created_by_user_id,
            "cash_session_id": self.cash_session_id,
            "subtotal_untaxed_cents": self.subtotal_untaxed_cents,
            "subtotal_taxed_cents": self.subtotal_taxed_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "amount_tendered_cents": self.amount_tendered_cents,
            "change_cents": self.change_cents,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        data.update(self.fiscal_dict())
        return data


class SaleLine(db.Model):
    """Line item of a sale. Owned by its sale and immutable after creation."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    # quantity * unit_price - discount (before tax)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))
    product = db.relationship("Product")

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + self.tax_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }
