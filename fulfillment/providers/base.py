from typing import Any, Dict, Optional

from fulfillment.events import COURSE, MARKETPLACE, SUBSCRIPTION, PaymentEvent


def feature_from_metadata(meta: Dict[str, Any]) -> Optional[str]:
    meta = meta or {}

    explicit = str(meta.get("feature") or "").strip().lower()
    if explicit:
        return explicit

    def has(*keys):
        return any(str(meta.get(k) or "").strip() for k in keys)

    if has("orderId", "order_id"):
        return MARKETPLACE
    if has("courseId", "course_id"):
        return COURSE
    if has("planId", "plan_id", "userId", "user_id"):
        return SUBSCRIPTION
    return None


class PaymentAdapter:
    """Turns one rail's raw payload into a PaymentEvent. Never touches storage."""

    provider = ""

    def normalize(self, payload: Dict[str, Any]) -> PaymentEvent:
        raise NotImplementedError
