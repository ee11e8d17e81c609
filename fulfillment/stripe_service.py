import os

import stripe

from fulfillment import config
from fulfillment.money import to_cents

stripe.api_key = os.getenv("STRIPE_SECRET_KEY")


def as_plain_dict(obj) -> dict:
    """StripeObject -> plain dict; dicts pass through untouched."""
    if obj is None:
        return {}
    if type(obj) is dict:
        return obj
    for attr in ("to_dict_recursive", "to_dict"):
        convert = getattr(obj, attr, None)
        if callable(convert):
            return convert()
    return dict(obj)


def construct_event(payload: bytes, signature: str):
    return stripe.Webhook.construct_event(
        payload,
        signature,
        os.getenv("STRIPE_WEBHOOK_SECRET")
    )


def create_checkout_session(order):
    return stripe.checkout.Session.create(
        mode="payment",
        line_items=[
            {
                "price_data": {
                    "currency": order.currency,
                    "product_data": {"name": item.title},
                    "unit_amount": to_cents(item.unit_amount),
                },
                "quantity": item.qty,
            }
            for item in order.items
        ],
        success_url=(
            f"{config.PUBLIC_WEB_BASE_URL}/marketplace/dashboard?tab=orders&ok=1"
            f"&order={order.id}&session_id={{CHECKOUT_SESSION_ID}}"
        ),
        cancel_url=f"{config.PUBLIC_WEB_BASE_URL}/marketplace/checkout?cancel=1&order={order.id}",
        metadata={"orderId": order.id, "userId": order.user_id},
        # Intent-level webhooks (payment_failed, canceled) only see the intent metadata.
        payment_intent_data={"metadata": {"orderId": order.id, "userId": order.user_id}},
        idempotency_key=f"checkout-{order.id}",
    )


def retrieve_checkout_session(session_id: str):
    return stripe.checkout.Session.retrieve(
        session_id,
        expand=["payment_intent", "payment_intent.latest_charge.balance_transaction"],
    )
