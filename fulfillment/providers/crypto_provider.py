from typing import Any, Dict

from fulfillment.events import PaymentEvent, PaymentStatus
from fulfillment.providers.base import PaymentAdapter, feature_from_metadata
from fulfillment.providers.refs import extract_stable_ref

STATUS_MAP = {
    "approved": PaymentStatus.SUCCESS,
    "rejected": PaymentStatus.FAILED,
    "canceled": PaymentStatus.CANCELED,
    "pending_verification": PaymentStatus.PENDING,
}


class ManualCryptoAdapter(PaymentAdapter):
    """Operator-verified crypto transfer, as recorded by the admin approval action."""

    provider = "manual_crypto"

    def normalize(self, payload: Dict[str, Any]) -> PaymentEvent:
        payload = payload or {}

        metadata = {}
        for source, target in (
            ("order_id", "orderId"),
            ("plan_id", "planId"),
            ("user_id", "userId"),
            ("course_id", "courseId"),
        ):
            if payload.get(source):
                metadata[target] = str(payload[source])
        if payload.get("feature"):
            metadata["feature"] = payload["feature"]

        status = STATUS_MAP.get(
            str(payload.get("status") or "").lower(), PaymentStatus.PENDING
        )

        try:
            amount = float(payload.get("amount") or 0)
        except (TypeError, ValueError):
            amount = 0.0

        return PaymentEvent(
            provider=self.provider,
            status=status,
            feature=feature_from_metadata(metadata),
            reference=extract_stable_ref(self.provider, payload, metadata),
            amount=amount,
            currency=str(payload.get("currency") or "usd").lower(),
            metadata=metadata,
            raw=payload,
        )
