# Overview: Price lists, per-product overrides and the price resolver used by the cart.

"""
Price Resolution

resolve_price(product, customer) returns the override from the customer's
price list when that list is active and defines one; otherwise the
product's base price. Nothing here writes to a sale.

INVARIANT: once any price list exists, exactly one has is_default=True.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Customer, PriceList, Product, ProductPrice
from .concurrency import lock_for_update, run_with_retry


PRICE_SOURCE_LIST = "LIST"
PRICE_SOURCE_BASE = "BASE"


class PriceListError(Exception):
    """Raised for price list operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def resolve_price_with_source(product: Product, customer: Customer | None = None) -> tuple[int, str]:
    """Returns (price_cents, source) where source is LIST or BASE."""
    if customer is not None and customer.price_list_id:
        price_list = db.session.get(PriceList, customer.price_list_id)
        if price_list is not None and price_list.is_active:
            override = (
                db.session.query(ProductPrice.price_cents)
                .filter_by(price_list_id=price_list.id, product_id=product.id)
                .scalar()
            )
            if override is not None:
                return override, PRICE_SOURCE_LIST
    return product.price_cents, PRICE_SOURCE_BASE


def resolve_price(product: Product, customer: Customer | None = None) -> int:
    return resolve_price_with_source(product, customer)[0]


def list_price_lists(include_inactive: bool = False) -> list[PriceList]:
    query = db.session.query(PriceList)
    if not include_inactive:
        query = query.filter(PriceList.is_active.is_(True))
    return query.order_by(PriceList.is_default.desc(), PriceList.name.asc()).all()


def create_price_list(name: str, description: str | None = None, *, is_default: bool = False) -> PriceList:
    """
    Create a price list. The first list ever created becomes the default.
    """
    name = (name or "").strip()
    if not name:
        raise PriceListError("Price list name is required")

    def _op():
        if db.session.query(PriceList).filter(db.func.lower(PriceList.name) == name.lower()).first():
            raise PriceListError("A price list with this name already exists", details={"name": name})

        make_default = is_default or db.session.query(PriceList).count() == 0
        price_list = PriceList(name=name, description=(description or "").strip() or None, is_default=False)
        db.session.add(price_list)
        db.session.flush()

        if make_default:
            _switch_default(price_list.id)

        db.session.commit()
        return price_list

    return run_with_retry(_op)


def _switch_default(price_list_id: int) -> None:
    lock_for_update(db.session.query(PriceList)).all()
    db.session.query(PriceList).filter(PriceList.id != price_list_id).update(
        {PriceList.is_default: False}, synchronize_session="fetch"
    )
    db.session.query(PriceList).filter(PriceList.id == price_list_id).update(
        {PriceList.is_default: True}, synchronize_session="fetch"
    )


def set_default_price_list(price_list_id: int) -> PriceList:
    """
    Make one list the default, clearing the flag on every other list in the
    same transaction.
    """
    def _op():
        price_list = db.session.get(PriceList, price_list_id)
        if not price_list:
            raise PriceListError("Price list not found")
        if not price_list.is_active:
            raise PriceListError("Inactive price lists cannot be the default")

        _switch_default(price_list.id)
        db.session.commit()
        return price_list

    return run_with_retry(_op)


def save_product_prices(product_id: int, prices: list[dict]) -> list[ProductPrice]:
    """
    Replace every override of one product.

    prices: [{"price_list_id": int, "price_cents": int}, ...]; lists that are
    left out lose their override (the product falls back to its base price
    there).
    """
    product = db.session.get(Product, product_id)
    if not product:
        raise PriceListError("Product not found")

    seen: set[int] = set()
    cleaned: list[tuple[int, int]] = []
    for entry in prices or []:
        try:
            list_id = int(entry["price_list_id"])
            price_cents = int(entry["price_cents"])
        except (KeyError, TypeError, ValueError):
            raise PriceListError("Each price needs price_list_id and price_cents", details={"entry": entry})
        if price_cents < 0:
            raise PriceListError("Prices cannot be negative", details={"price_list_id": list_id})
        if list_id in seen:
            raise PriceListError("Duplicate price list in request", details={"price_list_id": list_id})
        if not db.session.get(PriceList, list_id):
            raise PriceListError("Price list not found", details={"price_list_id": list_id})
        seen.add(list_id)
        cleaned.append((list_id, price_cents))

    def _op():
        db.session.query(ProductPrice).filter_by(product_id=product_id).delete()
        rows = [ProductPrice(price_list_id=list_id, product_id=product_id, price_cents=cents) for list_id, cents in cleaned]
        db.session.add_all(rows)
        db.session.commit()
        return rows

    return run_with_retry(_op)


def get_product_prices(product_id: int) -> list[ProductPrice]:
    """Overrides of one product in active lists, default list first."""
    return (
        db.session.query(ProductPrice)
        .join(PriceList, PriceList.id == ProductPrice.price_list_id)
        .filter(ProductPrice.product_id == product_id, PriceList.is_active.is_(True))
        .order_by(PriceList.is_default.desc(), PriceList.name.asc())
        .all()
    )


def assign_customer_price_list(customer_id: int, price_list_id: int | None) -> Customer:
    def _op():
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if not customer:
            raise PriceListError("Customer not found")
        if price_list_id is not None and not db.session.get(PriceList, price_list_id):
            raise PriceListError("Price list not found")
        customer.price_list_id = price_list_id
        db.session.commit()
        return customer

    return run_with_retry(_op)
