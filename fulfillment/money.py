from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


def to_cents(amount) -> int:
    """Major units -> integer cents, rounding half away from zero."""
    if amount is None or amount == "":
        return 0
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return 0
    if not value.is_finite():
        return 0
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_unit(cents) -> float:
    try:
        value = int(round(float(cents or 0)))
    except (TypeError, ValueError):
        return 0.0
    return float(Decimal(value) / 100)


def format_money(amount, currency: str = "usd") -> str:
    return f"{cents_to_unit(to_cents(amount)):.2f} {(currency or 'usd').upper()}"


def percent_of(cents: int, pct) -> int:
    """`pct` percent of an integer cent amount, rounded half-up to whole cents."""
    share = Decimal(int(cents)) * Decimal(str(pct)) / 100
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
