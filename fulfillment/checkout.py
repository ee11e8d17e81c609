import random
import time
from typing import List, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy.orm import Session

from fulfillment import config
from fulfillment.dates import as_utc, utcnow
from fulfillment.errors import DomainViolation
from fulfillment.models import Order, OrderItem, Product, PromoCode
from fulfillment.money import to_cents

logger = structlog.get_logger(__name__)


class CartLine(BaseModel):
    id: str
    qty: int = 1
    promo_code: Optional[str] = None


def check_promo(promo: Optional[PromoCode]) -> None:
    if promo is None or promo.deleted_at is not None:
        raise DomainViolation("Promo code not found.")
    if not promo.active:
        raise DomainViolation("Promo code is inactive.")

    now = utcnow()
    if promo.starts_at and now < as_utc(promo.starts_at):
        raise DomainViolation("Promo code is not valid yet.")
    if promo.ends_at and now > as_utc(promo.ends_at):
        raise DomainViolation("Promo code has expired.")
    if promo.max_use is not None and (promo.used or 0) >= promo.max_use:
        raise DomainViolation("Promo code usage limit reached.")


def promo_applies(promo: PromoCode, product: Product) -> bool:
    if promo.scope == "global":
        return True
    if promo.scope == "category":
        return bool(promo.category_key) and promo.category_key == (product.category or "")
    if promo.scope == "product":
        return (promo.product_id or "") == product.id
    if promo.scope == "shop":
        return bool(promo.shop_id) and promo.shop_id == (product.shop_id or "")
    return False


def validate_promo_for_product(db: Session, code: str, product: Product) -> PromoCode:
    promo = (
        db.query(PromoCode)
        .filter(PromoCode.code == code.strip().upper(), PromoCode.deleted_at.is_(None))
        .first()
    )
    check_promo(promo)
    if not promo_applies(promo, product):
        raise DomainViolation(f"Promo code {promo.code} does not apply to {product.title}.")
    return promo


def apply_promo_to_unit(unit_amount: float, promo: PromoCode):
    """(final unit, discount per unit), both rounded to cents and never negative."""
    if promo.type == "percent":
        discounted = unit_amount * (1 - float(promo.value or 0) / 100)
    else:
        discounted = unit_amount - float(promo.value or 0)
    final = max(0.0, to_cents(discounted) / 100)
    discount = max(0.0, to_cents(unit_amount - final) / 100)
    return final, discount


def build_order(db: Session, buyer_id: str, lines: List[CartLine], provider: str) -> Order:
    """Validate a cart and persist it as a `requires_payment` order."""
    if not lines:
        raise DomainViolation("Cart is empty.")

    qty_by_id = {}
    promo_by_id = {}
    for line in lines:
        qty_by_id[line.id] = max(1, int(line.qty or 1))
        if line.promo_code and line.promo_code.strip():
            promo_by_id[line.id] = line.promo_code.strip().upper()

    products = (
        db.query(Product)
        .filter(
            Product.id.in_(list(qty_by_id)),
            Product.status == "published",
            Product.deleted_at.is_(None),
        )
        .all()
    )
    if not products:
        raise DomainViolation("No purchasable products in cart.")
    cart_order = list(qty_by_id)
    products.sort(key=lambda p: cart_order.index(p.id))

    owned = [p.title for p in products if p.owner_id == buyer_id]
    if owned:
        raise DomainViolation("You cannot buy your own products: " + ", ".join(owned) + ".")

    order = Order(user_id=buyer_id, currency=config.CURRENCY, provider=provider)
    total = 0.0
    for position, product in enumerate(products):
        qty = qty_by_id.get(product.id, 1)
        unit = float(product.pricing_amount or 0)
        item = OrderItem(
            position=position,
            product_id=product.id,
            title=product.title,
            unit_amount=unit,
            qty=qty,
            seller_id=product.owner_id,
            shop_id=product.shop_id,
        )

        code = promo_by_id.get(product.id)
        if code:
            promo = validate_promo_for_product(db, code, product)
            final, discount = apply_promo_to_unit(unit, promo)
            item.unit_amount = final
            item.promo_code = promo.code
            item.promo_scope = promo.scope
            item.promo_type = promo.type
            item.promo_value = promo.value
            item.promo_discount_unit = discount

        order.items.append(item)
        total += item.unit_amount * qty

    order.total_amount_cents = to_cents(total)
    order.total_amount = order.total_amount_cents / 100

    if provider == "free":
        if order.total_amount_cents > 0:
            raise DomainViolation("Order is not free: use a paid checkout.")
    elif order.total_amount_cents <= 0:
        raise DomainViolation("Invalid order amount.")

    db.add(order)
    db.commit()
    db.refresh(order)

    logger.info(
        "order_created",
        order_id=order.id,
        provider=provider,
        total_cents=order.total_amount_cents,
        items=len(order.items),
    )
    return order


def new_crypto_reference() -> str:
    return f"REF-{int(time.time() * 1000)}-{random.randint(0, 999)}"
