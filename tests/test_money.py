from datetime import datetime, timezone

from fulfillment.dates import add_duration, as_utc
from fulfillment.money import cents_to_unit, format_money, percent_of, to_cents


def test_to_cents_rounds_half_up():
    assert to_cents(10.005) == 1001
    assert to_cents("19.99") == 1999
    assert to_cents(0.1 + 0.2) == 30


def test_to_cents_bad_input_is_zero():
    assert to_cents(None) == 0
    assert to_cents("") == 0
    assert to_cents("abc") == 0
    assert to_cents(float("nan")) == 0


def test_cents_to_unit():
    assert cents_to_unit(1999) == 19.99
    assert cents_to_unit(None) == 0.0


def test_percent_of():
    assert percent_of(1000, 20) == 200
    assert percent_of(999, 15) == 150
    assert percent_of(25, 10) == 3


def test_format_money():
    assert format_money(8, "usd") == "8.00 USD"
    assert format_money(4.5, None) == "4.50 USD"


def test_add_months_clamps_to_month_end():
    base = datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)
    assert add_duration(base, 1, "months") == datetime(2025, 2, 28, 12, 0, tzinfo=timezone.utc)


def test_add_duration_units():
    base = datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert add_duration(base, 1, "years") == datetime(2025, 2, 28, tzinfo=timezone.utc)
    assert add_duration(base, 10, "days") == datetime(2024, 3, 10, tzinfo=timezone.utc)
    assert add_duration(base, 0, "months") == base


def test_as_utc_treats_naive_as_utc():
    naive = datetime(2025, 5, 1, 8, 30)
    assert as_utc(naive).tzinfo is timezone.utc
    assert as_utc(None) is None
