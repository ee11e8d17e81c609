from typing import Any, Dict

from fulfillment.events import MARKETPLACE, PaymentEvent, PaymentStatus
from fulfillment.providers.base import PaymentAdapter
from fulfillment.providers.refs import extract_stable_ref


class FreeOrderAdapter(PaymentAdapter):
    """Zero-amount orders: nothing to collect, so the order is paid on creation."""

    provider = "free"

    def normalize(self, payload: Dict[str, Any]) -> PaymentEvent:
        payload = payload or {}
        order_id = str(payload.get("order_id") or "").strip()
        metadata = {"orderId": order_id} if order_id else {}

        return PaymentEvent(
            provider=self.provider,
            status=PaymentStatus.SUCCESS if order_id else PaymentStatus.PENDING,
            feature=MARKETPLACE if order_id else None,
            reference=extract_stable_ref(self.provider, payload, metadata),
            amount=0.0,
            currency=str(payload.get("currency") or "usd").lower(),
            metadata=metadata,
            raw=payload,
        )
