from collections import OrderedDict
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from fulfillment.dates import utcnow
from fulfillment.errors import DomainViolation, DuplicateEvent
from fulfillment.models import Order, PromoCode
from fulfillment.money import cents_to_unit

logger = structlog.get_logger(__name__)

TERMINAL_NEGATIVE = ("failed", "canceled")


def claim_order(db: Session, order_id: str) -> Optional[Order]:
    """
    Atomically mark an order paid and take its fulfillment lock.

    One conditional UPDATE; whoever matches the row owns fulfillment.
    Returns the claimed order, None when no such order exists, and raises
    DuplicateEvent when someone else already claimed it.
    """
    matched = (
        db.query(Order)
        .filter(Order.id == order_id, Order.fulfillment_locked.isnot(True))
        .update(
            {
                Order.status: "succeeded",
                Order.fulfillment_locked: True,
                Order.paid_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.commit()

    if not matched:
        if db.get(Order, order_id) is None:
            return None
        raise DuplicateEvent(order_id)

    order = db.get(Order, order_id)
    db.refresh(order)
    return order


def set_terminal_status(db: Session, order_id: str, status: str) -> bool:
    """failed / canceled, only from requires_payment: paid and already-closed orders keep their status."""
    if status not in TERMINAL_NEGATIVE:
        raise ValueError(f"Not a terminal failure status: {status}")

    matched = (
        db.query(Order)
        .filter(
            Order.id == order_id,
            Order.status == "requires_payment",
            Order.fulfillment_locked.isnot(True),
        )
        .update({Order.status: status}, synchronize_session=False)
    )
    db.commit()
    return bool(matched)


def apply_promo_usage(db: Session, order: Order) -> dict:
    usages = OrderedDict()
    for item in order.items:
        if item.promo_code:
            code = item.promo_code.strip().upper()
            usages[code] = usages.get(code, 0) + max(1, int(item.qty or 1))

    for code, inc in usages.items():
        (
            db.query(PromoCode)
            .filter(PromoCode.code == code, PromoCode.deleted_at.is_(None))
            .update({PromoCode.used: PromoCode.used + inc}, synchronize_session=False)
        )
    db.commit()
    return dict(usages)


def _id_of(value):
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def hydrate_from_stripe(order: Order, session: dict = None, intent: dict = None) -> Order:
    """Copy the gateway correlation block onto the order. Status is left alone."""
    session = session or {}
    intent = intent or {}
    if not intent and isinstance(session.get("payment_intent"), dict):
        intent = session["payment_intent"]

    latest_charge = intent.get("latest_charge")
    charge = latest_charge if isinstance(latest_charge, dict) else {}
    bt = charge.get("balance_transaction")
    bt = bt if isinstance(bt, dict) else {}

    order.stripe_session_id = session.get("id") or order.stripe_session_id or ""
    order.stripe_payment_intent_id = (
        intent.get("id") or _id_of(session.get("payment_intent")) or order.stripe_payment_intent_id or ""
    )
    order.stripe_charge_id = _id_of(latest_charge) or order.stripe_charge_id or ""
    order.stripe_receipt_url = charge.get("receipt_url") or order.stripe_receipt_url or ""
    order.stripe_customer_email = (
        (session.get("customer_details") or {}).get("email")
        or session.get("customer_email")
        or order.stripe_customer_email
        or ""
    )

    amount_cents = bt.get("amount")
    if amount_cents is None:
        amount_cents = intent.get("amount_received")
    if amount_cents is None:
        amount_cents = session.get("amount_total")
    if amount_cents is None:
        amount_cents = order.total_amount_cents
    fee_cents = bt.get("fee")
    net_cents = bt.get("net")
    if net_cents is None and fee_cents is not None:
        net_cents = amount_cents - fee_cents

    order.stripe_amounts = {
        "currency": (bt.get("currency") or intent.get("currency") or order.currency or "usd").lower(),
        "amount": cents_to_unit(amount_cents),
        "amountCents": amount_cents,
        "fee": cents_to_unit(fee_cents) if fee_cents is not None else None,
        "feeCents": fee_cents,
        "net": cents_to_unit(net_cents) if net_cents is not None else None,
        "netCents": net_cents,
    }
    return order


def record_crypto_approval(db: Session, order_id: str, admin_id: str, tx_hash: str = "", note: str = "") -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise DomainViolation("Order not found", status_code=404)

    order.crypto_status = "approved"
    order.crypto_validated_at = utcnow()
    order.crypto_validated_by = admin_id
    if tx_hash:
        order.crypto_tx_hash = tx_hash
    if note:
        order.crypto_note = note
    db.commit()
    return order


def reject_manual_payment(db: Session, order_id: str, reason: str) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise DomainViolation("Order not found", status_code=404)
    if order.status == "succeeded":
        raise DomainViolation("Order already paid", status_code=409)

    order.status = "failed"
    order.crypto_status = "rejected"
    order.crypto_rejected_at = utcnow()
    order.crypto_rejection_reason = reason
    db.commit()

    logger.info("manual_payment_rejected", order_id=order_id, reason=reason)
    return order
