# Overview: In-progress cart: line pricing, tax split and totals before checkout.

"""
Cart Builder

WHY: The cart holds what the operator is about to sell. It is pure
in-memory state; nothing is persisted until checkout (sales_service).

Amounts are integer cents, tax rates basis points. Tax is computed per line
at the line's own rate and rounded half-up, then summed:

    subtotal = quantity * unit_price - discount
    tax      = round_half_up(subtotal * rate_bps / 10000)
    total    = subtotal_untaxed + subtotal_taxed + tax
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Customer, Product
from ..models.sales import KIND_INVOICE, KIND_RECEIPT, VALID_DOCUMENT_KINDS
from .price_service import PriceListError, resolve_price_with_source


class CartError(Exception):
    """Raised for invalid cart input."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def compute_line_tax(subtotal_cents: int, tax_rate_bps: int) -> int:
    """Tax of one line, rounded half-up to the cent."""
    if tax_rate_bps <= 0 or subtotal_cents <= 0:
        return 0
    return (subtotal_cents * tax_rate_bps + 5000) // 10000


@dataclass
class CartLine:
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int
    tax_rate_bps: int
    discount_cents: int = 0
    price_source: str = "BASE"

    @property
    def gross_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @property
    def subtotal_cents(self) -> int:
        return self.gross_cents - self.discount_cents

    @property
    def tax_cents(self) -> int:
        return compute_line_tax(self.subtotal_cents, self.tax_rate_bps)

    @property
    def is_taxed(self) -> bool:
        return self.tax_rate_bps > 0

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "price_source": self.price_source,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
        }


@dataclass(frozen=True)
class CartTotals:
    subtotal_untaxed_cents: int
    subtotal_taxed_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_untaxed_cents": self.subtotal_untaxed_cents,
            "subtotal_taxed_cents": self.subtotal_taxed_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


def summarize_lines(lines) -> CartTotals:
    """
    Split subtotals by tax bracket and sum per-line tax.

    Works for anything exposing subtotal_cents, tax_cents, tax_rate_bps and
    discount_cents (cart lines, sale lines, credit note lines).
    """
    untaxed = taxed = tax = discount = 0
    for line in lines:
        if line.tax_rate_bps > 0:
            taxed += line.subtotal_cents
        else:
            untaxed += line.subtotal_cents
        tax += line.tax_cents
        discount += line.discount_cents
    return CartTotals(
        subtotal_untaxed_cents=untaxed,
        subtotal_taxed_cents=taxed,
        discount_cents=discount,
        tax_cents=tax,
        total_cents=untaxed + taxed + tax,
    )


@dataclass
class Cart:
    customer: Customer | None = None
    document_kind: str = KIND_RECEIPT
    lines: list[CartLine] = field(default_factory=list)

    def add_item(self, product: Product, quantity: int = 1, discount_cents: int = 0) -> CartLine:
        """Add a product at its resolved price; the same product merges into one line."""
        if quantity <= 0:
            raise CartError("Quantity must be positive", details={"product_id": product.id})
        if discount_cents < 0:
            raise CartError("Discount cannot be negative", details={"product_id": product.id})
        if not product.is_active:
            raise CartError("Product is not active", details={"product_id": product.id})

        for line in self.lines:
            if line.product_id == product.id:
                line.quantity += quantity
                line.discount_cents += discount_cents
                return line

        price_cents, source = resolve_price_with_source(product, self.customer)
        line = CartLine(
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            unit_price_cents=price_cents,
            tax_rate_bps=product.tax_rate_bps,
            discount_cents=discount_cents,
            price_source=source,
        )
        self.lines.append(line)
        return line

    def set_customer(self, customer: Customer | None) -> None:
        """Attach a customer and re-resolve every line's unit price."""
        self.customer = customer
        self.reprice()

    def reprice(self) -> None:
        """
        Re-resolve unit prices in place.

        A line whose lookup fails keeps its previous price.
        """
        for line in self.lines:
            try:
                product = db.session.get(Product, line.product_id)
                if product is None:
                    raise PriceListError("Product not found")
                line.unit_price_cents, line.price_source = resolve_price_with_source(product, self.customer)
            except (SQLAlchemyError, PriceListError) as exc:
                current_app.logger.warning("Keeping previous price for product %s: %s", line.product_id, exc)

    def totals(self) -> CartTotals:
        return summarize_lines(self.lines)

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer.id if self.customer else None,
            "document_kind": self.document_kind,
            "lines": [line.to_dict() for line in self.lines],
            "totals": self.totals().to_dict(),
        }


def to_whole_number(value) -> int:
    """int() that refuses fractional numbers such as 1.5."""
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{value!r} is not a whole number")
    return int(value)


def _as_int(value, field_name: str) -> int:
    try:
        return to_whole_number(value)
    except (TypeError, ValueError):
        raise CartError(f"{field_name} must be an integer")


def build_cart(items: list[dict], *, customer_id: int | None = None, document_kind: str = KIND_RECEIPT) -> Cart:
    """
    Build a cart from request data.

    items: [{"product_id": int, "quantity": int, "discount_cents": int?}, ...]
    """
    document_kind = (document_kind or KIND_RECEIPT).upper()
    if document_kind not in VALID_DOCUMENT_KINDS:
        raise CartError(f"document_kind must be {KIND_RECEIPT} or {KIND_INVOICE}")

    customer = None
    if customer_id is not None:
        customer = db.session.get(Customer, _as_int(customer_id, "customer_id"))
        if customer is None:
            raise CartError("Customer not found", details={"customer_id": customer_id})

    cart = Cart(customer=customer, document_kind=document_kind)
    for item in items or []:
        product_id = _as_int(item.get("product_id"), "product_id")
        product = db.session.get(Product, product_id)
        if product is None:
            raise CartError("Product not found", details={"product_id": product_id})
        cart.add_item(
            product,
            quantity=_as_int(item.get("quantity", 1), "quantity"),
            discount_cents=_as_int(item.get("discount_cents", 0), "discount_cents"),
        )
    return cart
