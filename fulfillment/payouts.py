from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from fulfillment import config
from fulfillment.models import AdminCommission, Category, Order, Product, SellerPayout, User
from fulfillment.money import cents_to_unit, percent_of, to_cents
from fulfillment.outcomes import LineOutcome

logger = structlog.get_logger(__name__)


def _category_pct(db: Session, category_ref: str) -> Optional[float]:
    category = (
        db.query(Category).filter(Category.key == category_ref).first()
        or db.get(Category, category_ref)
    )
    if category is None:
        return None
    if category.commission_pct is not None:
        return max(0.0, float(category.commission_pct))
    if category.parent_id:
        parent = db.get(Category, category.parent_id)
        if parent is not None and parent.commission_pct is not None:
            return max(0.0, float(parent.commission_pct))
    return None


def resolve_commission_pct(
    db: Session, category_ref: Optional[str], cache: Dict[str, float], default_pct: float
) -> float:
    """Category, then its parent, then the platform default. `cache` lives for one order."""
    if not category_ref:
        return max(0.0, default_pct)
    if category_ref in cache:
        return cache[category_ref]

    pct = _category_pct(db, category_ref)
    if pct is None:
        pct = max(0.0, default_pct)
    cache[category_ref] = pct
    return pct


def split_gross(unit_cents: int, qty: int, pct: float) -> Dict[str, int]:
    gross = unit_cents * qty
    commission = percent_of(gross, pct)
    return {"gross": gross, "commission": commission, "net": gross - commission}


def ensure_payouts(db: Session, order: Order, default_pct: float = None) -> List[LineOutcome]:
    """
    Credit sellers and record the platform commission for a paid order.

    One SellerPayout and one AdminCommission per (order, product, seller);
    lines that already have a payout are skipped. Both ledger rows and the
    seller balance increment for a line are committed together.
    """
    if order is None or order.status != "succeeded":
        return []

    if default_pct is None:
        default_pct = config.DEFAULT_COMMISSION_PCT

    currency = (order.currency or "usd").lower()
    pct_cache: Dict[str, float] = {}
    outcomes = []

    for item in list(order.items):
        product_id = item.product_id
        try:
            seller_id = item.seller_id
            shop_id = item.shop_id
            category_ref = None

            product = db.get(Product, product_id)
            if product is not None:
                seller_id = seller_id or product.owner_id
                shop_id = shop_id or product.shop_id
                category_ref = product.category

            if not seller_id:
                logger.warning("payout_seller_missing", order_id=order.id, product_id=product_id)
                outcomes.append(LineOutcome("payout", product_id, False, "skipped", "no seller"))
                continue

            exists = (
                db.query(SellerPayout.id)
                .filter(
                    SellerPayout.order_id == order.id,
                    SellerPayout.product_id == product_id,
                    SellerPayout.seller_id == seller_id,
                )
                .first()
            )
            if exists:
                outcomes.append(LineOutcome("payout", product_id, True, "exists"))
                continue

            pct = resolve_commission_pct(db, category_ref, pct_cache, default_pct)
            qty = max(1, int(item.qty or 1))
            unit_cents = to_cents(item.unit_amount)
            amounts = split_gross(unit_cents, qty, pct)
            net_unit = cents_to_unit(amounts["net"])

            db.add(SellerPayout(
                order_id=order.id,
                product_id=product_id,
                seller_id=seller_id,
                shop_id=shop_id,
                buyer_id=order.user_id,
                qty=qty,
                currency=currency,
                commission_rate=pct,
                unit_amount_cents=unit_cents,
                gross_amount_cents=amounts["gross"],
                commission_amount_cents=amounts["commission"],
                net_amount_cents=amounts["net"],
                unit_amount=cents_to_unit(unit_cents),
                gross_amount=cents_to_unit(amounts["gross"]),
                commission_amount=cents_to_unit(amounts["commission"]),
                net_amount=net_unit,
                status="available",
            ))
            db.add(AdminCommission(
                order_id=order.id,
                product_id=product_id,
                seller_id=seller_id,
                shop_id=shop_id,
                buyer_id=order.user_id,
                qty=qty,
                currency=currency,
                commission_rate=pct,
                gross_amount_cents=amounts["gross"],
                commission_amount_cents=amounts["commission"],
                gross_amount=cents_to_unit(amounts["gross"]),
                commission_amount=cents_to_unit(amounts["commission"]),
            ))
            db.query(User).filter(User.id == seller_id).update(
                {User.seller_balance: User.seller_balance + net_unit},
                synchronize_session=False,
            )
            db.commit()

            logger.info(
                "seller_credited",
                order_id=order.id,
                product_id=product_id,
                seller_id=seller_id,
                net=net_unit,
                commission_pct=pct,
            )
            outcomes.append(LineOutcome("payout", product_id, True, "credited"))

        except Exception as e:
            db.rollback()
            logger.error("payout_line_failed", order_id=order.id, product_id=product_id, error=str(e), exc_info=True)
            outcomes.append(LineOutcome("payout", product_id, False, "failed", str(e)))

    return outcomes
