from typing import List, Optional

import stripe
import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from fulfillment.auth import current_user_id
from fulfillment.checkout import CartLine, build_order, new_crypto_reference
from fulfillment.database import SessionLocal
from fulfillment.dispatcher import Dispatcher, get_dispatcher
from fulfillment.errors import DomainViolation
from fulfillment.events import MARKETPLACE
from fulfillment.models import Order
from fulfillment.orders import hydrate_from_stripe
from fulfillment.providers.free_provider import FreeOrderAdapter
from fulfillment.providers.stripe_provider import StripeAdapter
from fulfillment.stripe_service import (
    as_plain_dict,
    create_checkout_session,
    retrieve_checkout_session,
)

logger = structlog.get_logger(__name__)

router = APIRouter()


class CheckoutRequest(BaseModel):
    items: List[CartLine]


class CryptoCheckoutRequest(CheckoutRequest):
    network: str = "USDT"
    customer_email: Optional[str] = None


def order_summary(order: Order) -> dict:
    return {
        "order_id": order.id,
        "status": order.status,
        "provider": order.provider,
        "total_amount": order.total_amount,
        "currency": order.currency,
        "paid_at": order.paid_at.isoformat() if order.paid_at else None,
    }


@router.post("/checkout/stripe")
def stripe_checkout(request: CheckoutRequest, user_id: str = Depends(current_user_id)):
    db = SessionLocal()
    try:
        order = build_order(db, user_id, request.items, provider="stripe")
        session = create_checkout_session(order)

        order.stripe_session_id = session.id
        intent = getattr(session, "payment_intent", None)
        if isinstance(intent, str):
            order.stripe_payment_intent_id = intent
        db.commit()

        return {"order_id": order.id, "url": session.url}
    except DomainViolation as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except stripe.StripeError as e:
        logger.error("stripe_checkout_failed", user_id=user_id, error=str(e))
        raise HTTPException(status_code=502, detail="Payment provider unavailable")
    finally:
        db.close()


@router.post("/checkout/crypto")
def crypto_checkout(request: CryptoCheckoutRequest, user_id: str = Depends(current_user_id)):
    db = SessionLocal()
    try:
        order = build_order(db, user_id, request.items, provider="manual_crypto")
        order.crypto_reference = new_crypto_reference()
        order.crypto_network = request.network or "USDT"
        order.crypto_status = "pending_verification"
        order.payment_reference = order.crypto_reference
        if request.customer_email:
            order.stripe_customer_email = request.customer_email
        db.commit()

        return {
            "order_id": order.id,
            "reference": order.crypto_reference,
            "manual": True,
            "amount": order.total_amount,
            "currency": order.currency,
        }
    except DomainViolation as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    finally:
        db.close()


@router.post("/checkout/free")
def free_checkout(
    request: CheckoutRequest,
    user_id: str = Depends(current_user_id),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    db = SessionLocal()
    try:
        order = build_order(db, user_id, request.items, provider="free")
        event = FreeOrderAdapter().normalize({"order_id": order.id, "currency": order.currency})
        dispatcher.dispatch(event, db)

        db.refresh(order)
        return order_summary(order)
    except DomainViolation as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    finally:
        db.close()


@router.post("/orders/{order_id}/refresh")
def refresh_order(
    order_id: str,
    user_id: str = Depends(current_user_id),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Buyer-side poll after the Stripe redirect; races the webhook safely."""
    db = SessionLocal()
    try:
        order = db.query(Order).filter_by(id=order_id, user_id=user_id).first()
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")

        if order.provider != "stripe" or order.status == "succeeded" or not order.stripe_session_id:
            return order_summary(order)

        try:
            session = as_plain_dict(retrieve_checkout_session(order.stripe_session_id))
        except stripe.StripeError as e:
            logger.warning("stripe_refresh_failed", order_id=order_id, error=str(e))
            return order_summary(order)

        hydrate_from_stripe(order, session)
        db.commit()

        event = StripeAdapter().normalize(session)
        if event.feature is None:
            event.metadata["orderId"] = order.id
            event.feature = MARKETPLACE
        dispatcher.dispatch(event, db)

        db.refresh(order)
        return order_summary(order)
    finally:
        db.close()
