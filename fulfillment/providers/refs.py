"""
Stable external reference extraction.

Each rail lists the payload paths that identify one logical payment, in
priority order. The first non-empty value wins. The same reference must come
out of every trigger for a payment (webhook, refresh poll, admin approval),
so a Stripe webhook resolves to the Checkout Session id, not the event id.
"""
from typing import Any, Dict, Optional, Sequence, Tuple

Path = Tuple[str, ...]

STABLE_REF_RULES: Dict[str, Sequence[Path]] = {
    "stripe": (
        ("data", "object", "id"),
        ("id",),
        ("session_id",),
        ("checkout_session_id",),
        ("payment_intent",),
    ),
    "manual_crypto": (
        ("reference",),
        ("tx_hash",),
        ("order_id",),
    ),
    "free": (
        ("order_id",),
    ),
}

# Used when the rail is unknown or its own paths are all empty.
GENERIC_METADATA_KEYS = ("orderId", "order_id", "planId", "courseId", "productId")


def dig(payload: Any, path: Path) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _clean(value) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def extract_stable_ref(
    provider: str, payload: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None
) -> Optional[str]:
    for path in STABLE_REF_RULES.get((provider or "").lower(), ()):
        value = _clean(dig(payload, path))
        if value:
            return value

    for key in GENERIC_METADATA_KEYS:
        value = _clean((metadata or {}).get(key))
        if value:
            return value
    return None
