from typing import Any, Dict

from fulfillment.events import PaymentEvent, PaymentStatus
from fulfillment.money import cents_to_unit
from fulfillment.providers.base import PaymentAdapter, feature_from_metadata
from fulfillment.providers.refs import extract_stable_ref

SUCCESS_EVENTS = {
    "checkout.session.async_payment_succeeded",
    "payment_intent.succeeded",
}
FAILED_EVENTS = {
    "payment_intent.payment_failed",
    "checkout.session.async_payment_failed",
}
CANCELED_EVENTS = {
    "checkout.session.expired",
    "payment_intent.canceled",
}


def status_for_event(event_type: str, obj: Dict[str, Any]) -> PaymentStatus:
    if event_type == "checkout.session.completed":
        # Delayed payment methods complete the session before the money lands.
        if obj.get("payment_status") in ("paid", "no_payment_required"):
            return PaymentStatus.SUCCESS
        return PaymentStatus.PENDING
    if event_type in SUCCESS_EVENTS:
        return PaymentStatus.SUCCESS
    if event_type in FAILED_EVENTS:
        return PaymentStatus.FAILED
    if event_type in CANCELED_EVENTS:
        return PaymentStatus.CANCELED
    return PaymentStatus.PENDING


def status_for_object(obj: Dict[str, Any]) -> PaymentStatus:
    kind = obj.get("object")
    if kind == "checkout.session":
        if obj.get("payment_status") in ("paid", "no_payment_required"):
            return PaymentStatus.SUCCESS
        if obj.get("status") == "expired":
            return PaymentStatus.CANCELED
        return PaymentStatus.PENDING
    if kind == "payment_intent":
        status = obj.get("status")
        if status == "succeeded":
            return PaymentStatus.SUCCESS
        if status == "canceled":
            return PaymentStatus.CANCELED
        return PaymentStatus.PENDING
    return PaymentStatus.PENDING


def amount_minor(obj: Dict[str, Any]) -> int:
    for key in ("amount_total", "amount_received", "amount"):
        value = obj.get(key)
        if isinstance(value, (int, float)):
            return int(value)
    return 0


class StripeAdapter(PaymentAdapter):
    """
    Card gateway rail.

    Accepts either a webhook event (``type`` + ``data.object``) or a bare
    Checkout Session / PaymentIntent retrieved by a refresh poll.
    """

    provider = "stripe"

    def normalize(self, payload: Dict[str, Any]) -> PaymentEvent:
        payload = payload or {}
        event_type = payload.get("type")
        data = payload.get("data")

        if event_type and isinstance(data, dict) and isinstance(data.get("object"), dict):
            obj = data["object"]
            status = status_for_event(event_type, obj)
        else:
            obj = payload
            status = status_for_object(obj)

        metadata = dict(obj.get("metadata") or {})

        return PaymentEvent(
            provider=self.provider,
            status=status,
            feature=feature_from_metadata(metadata),
            reference=extract_stable_ref(self.provider, payload, metadata),
            amount=cents_to_unit(amount_minor(obj)),
            currency=str(obj.get("currency") or "usd").lower(),
            metadata=metadata,
            raw=payload,
        )
