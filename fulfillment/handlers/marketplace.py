from collections import OrderedDict
from typing import List

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fulfillment.errors import DuplicateEvent
from fulfillment.events import PaymentEvent, PaymentStatus
from fulfillment.licenses.client import LicenseServiceClient, get_license_client
from fulfillment.licenses.orchestrator import run_licenses
from fulfillment.models import Order, User
from fulfillment.money import format_money
from fulfillment.notifications import Notifier, get_notifier, safe_send
from fulfillment.orders import apply_promo_usage, claim_order, set_terminal_status
from fulfillment.outcomes import FulfillmentResult, LineOutcome
from fulfillment.payouts import ensure_payouts

logger = structlog.get_logger(__name__)


def display_name(user: User, fallback: str) -> str:
    if user is None:
        return fallback
    return user.full_name or user.email or fallback


class MarketplaceHandler:
    """
    Marketplace orders: claim, then deliver.

    Only the caller that wins the claim goes on to promo counters,
    licenses, payouts and mail. Everyone else returns a duplicate result.
    """

    def __init__(self, notifier: Notifier = None, license_client: LicenseServiceClient = None):
        self.notifier = notifier or get_notifier()
        self.license_client = license_client or get_license_client()

    def __call__(self, event: PaymentEvent, db: Session) -> FulfillmentResult:
        order_id = event.meta("orderId", "order_id")
        if not order_id:
            logger.warning("marketplace_event_missing_order", provider=event.provider, reference=event.reference)
            return FulfillmentResult(order_id=None)

        if event.status == PaymentStatus.SUCCESS:
            return self.fulfill(db, order_id)

        if event.status in (PaymentStatus.FAILED, PaymentStatus.CANCELED):
            changed = set_terminal_status(db, order_id, event.status.value)
            logger.info("order_payment_not_completed", order_id=order_id, status=event.status.value, changed=changed)
            return FulfillmentResult(order_id=order_id, status=event.status.value if changed else None)

        logger.info("order_payment_pending", order_id=order_id, provider=event.provider)
        return FulfillmentResult(order_id=order_id)

    def fulfill(self, db: Session, order_id: str) -> FulfillmentResult:
        try:
            order = claim_order(db, order_id)
        except DuplicateEvent:
            logger.info("order_already_fulfilled", order_id=order_id)
            return FulfillmentResult(order_id=order_id, duplicate=True, status="succeeded")

        if order is None:
            logger.warning("order_not_found", order_id=order_id)
            return FulfillmentResult(order_id=order_id)

        logger.info("order_claimed", order_id=order_id, items=len(order.items))
        result = FulfillmentResult(order_id=order_id, claimed=True, status="succeeded")

        product_ids = [item.product_id for item in order.items]

        try:
            apply_promo_usage(db, order)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("promo_usage_failed", order_id=order_id, error=str(e))

        # Each step runs even when the previous one blew up; the order stays claimed.
        result.licenses = self.run_step(
            db, order_id, "license", product_ids,
            lambda: run_licenses(db, order_id, client=self.license_client, notifier=self.notifier),
        )
        result.payouts = self.run_step(
            db, order_id, "payout", product_ids,
            lambda: ensure_payouts(db, db.get(Order, order_id)),
        )

        try:
            order = db.get(Order, order_id)
            result.notifications.extend(self.notify_sellers(db, order))
            if self.notify_buyer(order):
                result.notifications.append("buyer")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("order_notifications_failed", order_id=order_id, error=str(e))

        if result.failures:
            logger.warning(
                "order_fulfilled_with_failures",
                order_id=order_id,
                failures=[(o.step, o.product_id, o.error) for o in result.failures],
            )
        else:
            logger.info("order_fulfilled", order_id=order_id)
        return result

    def run_step(self, db: Session, order_id: str, step: str, product_ids, run) -> List[LineOutcome]:
        try:
            return run()
        except Exception as e:
            db.rollback()
            logger.error("fulfillment_step_failed", order_id=order_id, step=step, error=str(e), exc_info=True)
            return [LineOutcome(step, product_id, False, "failed", str(e)) for product_id in product_ids]

    def notify_sellers(self, db: Session, order: Order) -> list:
        sellers = OrderedDict()
        for item in order.items:
            if not item.seller_id:
                continue
            entry = sellers.setdefault(item.seller_id, {"items": [], "total": 0.0})
            line_total = (item.unit_amount or 0) * (item.qty or 1)
            entry["items"].append({
                "title": item.title,
                "qty": item.qty,
                "amount": format_money(line_total, order.currency),
            })
            entry["total"] += line_total

        buyer_name = display_name(order.user, "A customer")
        sent = []
        for seller_id, data in sellers.items():
            seller = db.get(User, seller_id)
            if seller is None or not seller.email:
                continue
            ok = safe_send(
                self.notifier.send_sale_notification,
                to=seller.email,
                full_name=display_name(seller, "Seller"),
                customer_name=buyer_name,
                items=data["items"],
                total_earnings=format_money(data["total"], order.currency),
            )
            if ok:
                sent.append(f"seller:{seller_id}")
        return sent

    def notify_buyer(self, order: Order) -> bool:
        buyer = order.user
        if buyer is None or not buyer.email:
            return False

        product_title = order.items[0].title if order.items else "Marketplace order"
        send = (
            self.notifier.send_crypto_approved
            if order.provider == "manual_crypto"
            else self.notifier.send_order_confirmation
        )
        return safe_send(
            send,
            to=buyer.email,
            full_name=display_name(buyer, "Customer"),
            product_title=product_title,
        )
