from __future__ import annotations

from ..extensions import db
from fiscalpos.time_utils import to_utc_z


ID_TYPE_TAX_ID = "TAX_ID"
ID_TYPE_NATIONAL_ID = "NATIONAL_ID"
ID_TYPE_PASSPORT = "PASSPORT"
ID_TYPE_FINAL_CONSUMER = "FINAL_CONSUMER"
VALID_ID_TYPES = {ID_TYPE_TAX_ID, ID_TYPE_NATIONAL_ID, ID_TYPE_PASSPORT, ID_TYPE_FINAL_CONSUMER}


class Product(db.Model):
    """Sellable product or service with its base price and tax rate."""
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)

    # Base price (cents), used when no price list override applies
    price_cents = db.Column(db.Integer, nullable=False)

    # Tax rate in basis points; 0 means zero-rated
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    is_service = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "is_service": self.is_service,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Customer(db.Model):
    """
    Buyer identification for fiscal documents.

    The seeded default customer (is_default=True) stands for the anonymous
    final consumer: it may appear on receipts but never on an invoice.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    id_type = db.Column(db.String(16), nullable=False, default=ID_TYPE_FINAL_CONSUMER)
    id_number = db.Column(db.String(20), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    price_list_id = db.Column(db.Integer, db.ForeignKey("price_lists.id"), nullable=True, index=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    price_list = db.relationship("PriceList", backref=db.backref("customers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def can_receive_invoice(self) -> bool:
        return (
            not self.is_default
            and self.id_type != ID_TYPE_FINAL_CONSUMER
            and bool((self.id_number or "").strip())
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "id_type": self.id_type,
            "id_number": self.id_number,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "price_list_id": self.price_list_id,
            "is_default": self.is_default,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PriceList(db.Model):
    """
    Named set of per-product price overrides assignable to customers.

    INVARIANT: exactly one list carries is_default=True once any list
    exists (see price_service.set_default_price_list).
    """
    __tablename__ = "price_lists"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_default": self.is_default,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductPrice(db.Model):
    """Override price of one product inside one price list."""
    __tablename__ = "product_prices"
    __table_args__ = (
        db.UniqueConstraint("price_list_id", "product_id", name="uq_product_prices_list_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    price_list_id = db.Column(db.Integer, db.ForeignKey("price_lists.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    price_cents = db.Column(db.Integer, nullable=False)

    price_list = db.relationship("PriceList", backref=db.backref("product_prices", lazy=True))
    product = db.relationship("Product", backref=db.backref("list_prices", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "price_list_id": self.price_list_id,
            "price_list_name": self.price_list.name if self.price_list else None,
            "product_id": self.product_id,
            "price_cents": self.price_cents,
        }
