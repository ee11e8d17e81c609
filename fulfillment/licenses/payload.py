from fulfillment.models import Product, User

LICENSABLE_TYPES = frozenset({"robot_trading", "indicator", "mt4_mt5"})

# Stands in for "lifetime": the external service has no unbounded duration.
LIFETIME_DURATION = 100
LIFETIME_UNIT = "years"

KEY_TYPES = {
    "robot_trading": "robot",
    "mt4_mt5": "robot",
    "indicator": "indicator",
}


def is_subscription(product: Product) -> bool:
    return (product.pricing_mode or "") == "subscription"


def needs_license(product: Product) -> bool:
    if product.type not in LICENSABLE_TYPES:
        return False
    return is_subscription(product) or bool(product.has_license)


def license_duration(product: Product):
    """(duration, unit) for one purchase of `product`."""
    if is_subscription(product):
        interval = (product.pricing_interval or "month").strip().lower()
        return 1, "years" if interval in ("year", "yearly", "annual") else "months"
    return LIFETIME_DURATION, LIFETIME_UNIT


def build_issue_payload(user: User, product: Product) -> dict:
    duration, unit = license_duration(product)
    return {
        "nom": (user.surname or "").strip(),
        "prenom": (user.name or "").strip(),
        "telephone": (user.phone or "").strip(),
        "email": (user.email or "").strip(),
        "duration": duration,
        "unit": unit,
        "key_type": KEY_TYPES.get(product.type, "robot"),
        "robot_name": product.title or "",
    }


def missing_identity_fields(payload: dict):
    return [field for field in ("nom", "prenom", "telephone") if not payload.get(field)]


def build_renew_payload(license_key: str, duration, unit: str, reactivate: bool = True) -> dict:
    return {
        "license_key": license_key,
        "duration": duration,
        "unit": unit,
        "reactivate": reactivate,
    }
