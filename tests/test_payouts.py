from conftest import make_category, make_order, make_product, make_user
from fulfillment.models import AdminCommission, SellerPayout, User
from fulfillment.payouts import ensure_payouts, resolve_commission_pct, split_gross


def test_category_rate(db):
    make_category(db, "robots", commission_pct=30)
    assert resolve_commission_pct(db, "robots", {}, 20) == 30


def test_category_lookup_by_id(db):
    category = make_category(db, "indicators", commission_pct=12.5)
    assert resolve_commission_pct(db, category.id, {}, 20) == 12.5


def test_parent_rate_when_category_has_none(db):
    parent = make_category(db, "trading", commission_pct=15)
    make_category(db, "scalpers", parent=parent)
    assert resolve_commission_pct(db, "scalpers", {}, 20) == 15


def test_default_rate(db):
    make_category(db, "misc")
    assert resolve_commission_pct(db, "misc", {}, 20) == 20
    assert resolve_commission_pct(db, "unknown", {}, 20) == 20
    assert resolve_commission_pct(db, None, {}, 20) == 20


def test_cache_is_used_within_one_order(db):
    cache = {"robots": 42.0}
    make_category(db, "robots", commission_pct=30)
    assert resolve_commission_pct(db, "robots", cache, 20) == 42.0

    fresh = {}
    resolve_commission_pct(db, "robots", fresh, 20)
    assert fresh == {"robots": 30}


def test_split_gross_integer_cents():
    assert split_gross(1999, 3, 30) == {"gross": 5997, "commission": 1799, "net": 4198}
    assert split_gross(500, 1, 0) == {"gross": 500, "commission": 0, "net": 500}


def test_payout_with_default_rate(db):
    buyer = make_user(db)
    seller = make_user(db)
    product = make_product(db, seller, pricing_amount=19.99)
    order = make_order(db, buyer, [product], qty=2, status="succeeded")

    outcomes = ensure_payouts(db, order, default_pct=20)

    assert [(o.action, o.ok) for o in outcomes] == [("credited", True)]
    payout = db.query(SellerPayout).one()
    assert payout.commission_rate == 20
    assert (payout.gross_amount_cents, payout.commission_amount_cents, payout.net_amount_cents) == (3998, 800, 3198)
    commission = db.query(AdminCommission).one()
    assert commission.commission_amount == 8.0
    db.expire_all()
    assert db.get(User, seller.id).seller_balance == 31.98


def test_payouts_are_idempotent(db):
    buyer = make_user(db)
    seller = make_user(db)
    order = make_order(db, buyer, [make_product(db, seller)], status="succeeded")

    ensure_payouts(db, order, default_pct=20)
    outcomes = ensure_payouts(db, order, default_pct=20)

    assert [o.action for o in outcomes] == ["exists"]
    assert db.query(SellerPayout).count() == 1
    assert db.query(AdminCommission).count() == 1
    db.expire_all()
    assert db.get(User, seller.id).seller_balance == 8.0


def test_unpaid_order_is_not_credited(db):
    buyer = make_user(db)
    seller = make_user(db)
    order = make_order(db, buyer, [make_product(db, seller)])

    assert ensure_payouts(db, order) == []
    assert db.query(SellerPayout).count() == 0


def test_failing_line_does_not_block_the_next(db, mocker):
    buyer = make_user(db)
    s1 = make_user(db)
    s2 = make_user(db)
    first = make_product(db, s1, title="First")
    second = make_product(db, s2, title="Second")
    order = make_order(db, buyer, [first, second], status="succeeded")

    calls = []

    def flaky_split(unit_cents, qty, pct):
        calls.append(unit_cents)
        if len(calls) == 1:
            raise ValueError("bad amount")
        return split_gross(unit_cents, qty, pct)

    mocker.patch("fulfillment.payouts.split_gross", side_effect=flaky_split)

    outcomes = ensure_payouts(db, order, default_pct=20)

    assert [(o.product_id, o.action, o.ok) for o in outcomes] == [
        (first.id, "failed", False),
        (second.id, "credited", True),
    ]
    assert outcomes[0].error == "bad amount"
    assert [p.seller_id for p in db.query(SellerPayout).all()] == [s2.id]
    db.expire_all()
    assert db.get(User, s1.id).seller_balance == 0.0

    outcomes = ensure_payouts(db, order, default_pct=20)

    assert [o.action for o in outcomes] == ["credited", "exists"]
    assert db.query(SellerPayout).count() == 2
