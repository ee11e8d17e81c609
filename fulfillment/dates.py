import calendar
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value):
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _add_months(base: datetime, months: int) -> datetime:
    index = base.month - 1 + months
    year = base.year + index // 12
    month = index % 12 + 1
    day = min(base.day, calendar.monthrange(year, month)[1])
    return base.replace(year=year, month=month, day=day)


def add_duration(base: datetime, duration, unit: str) -> datetime:
    try:
        amount = int(duration)
    except (TypeError, ValueError):
        return base
    if amount <= 0:
        return base

    unit = (unit or "").strip().lower()
    if unit in ("day", "days"):
        return base + timedelta(days=amount)
    if unit in ("year", "years"):
        return _add_months(base, 12 * amount)
    return _add_months(base, amount)
