from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from fulfillment.auth import require_admin
from fulfillment.database import SessionLocal
from fulfillment.dispatcher import Dispatcher, get_dispatcher
from fulfillment.errors import DomainViolation
from fulfillment.licenses.client import LicenseServiceClient, get_license_client
from fulfillment.licenses.orchestrator import run_licenses
from fulfillment.models import Order
from fulfillment.notifications import Notifier, get_notifier, safe_send
from fulfillment.orders import record_crypto_approval, reject_manual_payment
from fulfillment.providers.crypto_provider import ManualCryptoAdapter

router = APIRouter(prefix="/admin")


class ApproveRequest(BaseModel):
    tx_hash: Optional[str] = None
    note: Optional[str] = None


class RejectRequest(BaseModel):
    reason: str = "Payment not received"


@router.get("/crypto/pending")
def pending_crypto_orders(admin_id: str = Depends(require_admin)):
    db = SessionLocal()
    try:
        orders = (
            db.query(Order)
            .filter(Order.provider == "manual_crypto", Order.status == "requires_payment")
            .order_by(Order.created_at.desc())
            .all()
        )
        return {
            "items": [
                {
                    "order_id": o.id,
                    "reference": o.crypto_reference,
                    "network": o.crypto_network,
                    "total_amount": o.total_amount,
                    "currency": o.currency,
                    "buyer_email": o.user.email if o.user else None,
                }
                for o in orders
            ]
        }
    finally:
        db.close()


@router.post("/crypto/{order_id}/approve")
def approve_crypto_order(
    order_id: str,
    request: ApproveRequest,
    admin_id: str = Depends(require_admin),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    db = SessionLocal()
    try:
        order = record_crypto_approval(db, order_id, admin_id, request.tx_hash or "", request.note or "")
        event = ManualCryptoAdapter().normalize({
            "order_id": order.id,
            "reference": order.crypto_reference,
            "network": order.crypto_network,
            "tx_hash": order.crypto_tx_hash,
            "status": "approved",
            "amount": order.total_amount,
            "currency": order.currency,
        })
        result = dispatcher.dispatch(event, db)
        return {
            "ok": True,
            "claimed": bool(result and result.claimed),
            "duplicate": bool(result and result.duplicate),
        }
    except DomainViolation as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    finally:
        db.close()


@router.post("/crypto/{order_id}/reject")
def reject_crypto_order(
    order_id: str,
    request: RejectRequest,
    admin_id: str = Depends(require_admin),
    notifier: Notifier = Depends(get_notifier),
):
    db = SessionLocal()
    try:
        order = reject_manual_payment(db, order_id, request.reason)
        if order.user and order.user.email:
            safe_send(
                notifier.send_crypto_rejected,
                to=order.user.email,
                full_name=order.user.full_name or "Customer",
                product_title=order.items[0].title if order.items else "Order",
                reason=request.reason,
            )
        return {"ok": True, "status": order.status}
    except DomainViolation as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    finally:
        db.close()


@router.post("/orders/{order_id}/licenses/replay")
def replay_licenses(
    order_id: str,
    admin_id: str = Depends(require_admin),
    client: LicenseServiceClient = Depends(get_license_client),
    notifier: Notifier = Depends(get_notifier),
):
    """Re-attempt failed license lines of a paid order. The order claim is not re-run."""
    db = SessionLocal()
    try:
        order = db.get(Order, order_id)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        if order.status != "succeeded":
            raise HTTPException(status_code=409, detail="Order is not paid")

        outcomes = run_licenses(db, order_id, client=client, notifier=notifier, retry_failed=True)
        return {
            "ok": all(o.ok for o in outcomes),
            "licenses": [
                {"product_id": o.product_id, "action": o.action, "ok": o.ok, "error": o.error}
                for o in outcomes
            ],
        }
    finally:
        db.close()
