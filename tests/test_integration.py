import pytest
from fastapi.testclient import TestClient

from conftest import TestingSessionLocal, make_category, make_product, make_user
from fulfillment.auth import verify_token
from fulfillment.dispatcher import default_dispatcher, get_dispatcher
from fulfillment.main import app as fastapi_app
from fulfillment.models import AdminCommission, License, Order, SellerPayout, User
from fulfillment.notifications import get_notifier


@pytest.fixture
def identity():
    return {"sub": "anonymous", "roles": []}


@pytest.fixture
def client(monkeypatch, identity, notifier, license_client):
    monkeypatch.setattr("fulfillment.routes.SessionLocal", TestingSessionLocal)
    monkeypatch.setattr("fulfillment.admin.SessionLocal", TestingSessionLocal)
    monkeypatch.setattr("fulfillment.main.SessionLocal", TestingSessionLocal)

    dispatcher = default_dispatcher(notifier=notifier, license_client=license_client)
    fastapi_app.dependency_overrides[verify_token] = lambda: identity
    fastapi_app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    fastapi_app.dependency_overrides[get_notifier] = lambda: notifier

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()


def test_manual_crypto_lifecycle(client, db, identity, notifier, license_client):
    """
    Test the full manual crypto flow:
    1. Buyer checks out on the crypto rail (API -> DB)
    2. Operator sees it pending and approves it (API -> dispatch -> fulfillment)
    3. A second approval is a no-op
    """
    buyer = make_user(db, email="buyer@example.com")
    seller = make_user(db, email="seller@example.com")
    make_category(db, "robots", commission_pct=25)
    product = make_product(
        db, seller, title="Trend Robot", type="robot_trading", category="robots",
        pricing_mode="subscription", pricing_interval="month", pricing_amount=40.0,
    )

    # --- 1. CHECKOUT ---
    identity["sub"] = buyer.id
    response = client.post("/checkout/crypto", json={"items": [{"id": product.id}], "network": "TRC20"})

    assert response.status_code == 200
    body = response.json()
    assert body["reference"].startswith("REF-")
    assert body["amount"] == 40.0
    order_id = body["order_id"]

    order = db.get(Order, order_id)
    assert order.status == "requires_payment"
    assert order.crypto_status == "pending_verification"
    assert order.crypto_network == "TRC20"

    # --- 2. OPERATOR APPROVAL ---
    identity.update(sub="admin-1", roles=["admin"])
    pending = client.get("/admin/crypto/pending").json()["items"]
    assert [p["order_id"] for p in pending] == [order_id]
    assert pending[0]["buyer_email"] == "buyer@example.com"

    response = client.post(f"/admin/crypto/{order_id}/approve", json={"tx_hash": "0xabc", "note": "seen on chain"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "claimed": True, "duplicate": False}

    db.expire_all()
    order = db.get(Order, order_id)
    assert order.status == "succeeded"
    assert order.crypto_status == "approved"
    assert order.crypto_validated_by == "admin-1"
    assert order.crypto_tx_hash == "0xabc"

    payout = db.query(SellerPayout).one()
    assert (payout.commission_amount_cents, payout.net_amount_cents) == (1000, 3000)
    assert db.query(AdminCommission).one().commission_amount == 10.0
    assert db.get(User, seller.id).seller_balance == 30.0
    assert db.query(License).one().status == "issued"
    notifier.send_crypto_approved.assert_called_once()
    assert client.get("/admin/crypto/pending").json()["items"] == []

    # --- 3. SECOND APPROVAL ---
    response = client.post(f"/admin/crypto/{order_id}/approve", json={})

    assert response.json() == {"ok": True, "claimed": False, "duplicate": True}
    db.expire_all()
    assert db.query(SellerPayout).count() == 1
    assert license_client.issue.call_count == 1

    # A paid order can no longer be rejected
    response = client.post(f"/admin/crypto/{order_id}/reject", json={"reason": "typo"})
    assert response.status_code == 409


def test_manual_crypto_rejection(client, db, identity, notifier):
    buyer = make_user(db, email="buyer@example.com")
    seller = make_user(db)
    product = make_product(db, seller, title="Breakout Indicator", pricing_amount=15.0)

    identity["sub"] = buyer.id
    order_id = client.post("/checkout/crypto", json={"items": [{"id": product.id}]}).json()["order_id"]

    identity.update(sub="agent-1", roles=["agent"])
    response = client.post(f"/admin/crypto/{order_id}/reject", json={"reason": "No transfer received"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "status": "failed"}

    db.expire_all()
    order = db.get(Order, order_id)
    assert order.crypto_status == "rejected"
    assert order.crypto_rejection_reason == "No transfer received"
    assert db.query(SellerPayout).count() == 0
    notifier.send_crypto_rejected.assert_called_once_with(
        to="buyer@example.com",
        full_name=order.user.full_name,
        product_title="Breakout Indicator",
        reason="No transfer received",
    )


def test_approve_unknown_order(client, identity):
    identity.update(sub="admin-1", roles=["admin"])

    response = client.post("/admin/crypto/missing/approve", json={})

    assert response.status_code == 404
