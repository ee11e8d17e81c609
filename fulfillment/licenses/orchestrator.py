"""
License issuance for paid orders.

For each order line carrying a licensable product, either issue a fresh key
or, when the buyer already holds a key for a subscription product, renew that
key for one more billing interval. Each line is independent: an external
failure is recorded as a ``failed`` License row and the next line proceeds.
A line that already has a License row is left alone, which is what makes
re-running this safe. Operators replay failed lines with ``retry_failed``.
"""
from typing import List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fulfillment import config
from fulfillment.dates import add_duration, as_utc, utcnow
from fulfillment.errors import MissingLicenseFields
from fulfillment.licenses.client import LicenseServiceClient
from fulfillment.licenses.payload import (
    build_issue_payload,
    build_renew_payload,
    is_subscription,
    missing_identity_fields,
    needs_license,
)
from fulfillment.models import License, Order, OrderItem, Product, User
from fulfillment.notifications import safe_send
from fulfillment.outcomes import LineOutcome

logger = structlog.get_logger(__name__)

ACTIVE_STATUSES = ("issued", "renewed")


def find_latest_key(db: Session, user_id: str, product_id: str) -> Optional[License]:
    return (
        db.query(License)
        .filter(
            License.user_id == user_id,
            License.product_id == product_id,
            License.status.in_(ACTIVE_STATUSES),
            License.license_key.isnot(None),
            License.license_key != "",
        )
        .order_by(License.created_at.desc(), License.id.desc())
        .first()
    )


def _store(db: Session, row: Optional[License], **fields) -> License:
    if row is None:
        row = License(**fields)
        db.add(row)
    else:
        for key, value in fields.items():
            setattr(row, key, value)
    db.commit()
    return row


def _base_fields(order: Order, item: OrderItem, product: Product, payload: dict) -> dict:
    return {
        "user_id": order.user_id,
        "order_id": order.id,
        "product_id": product.id,
        "seller_id": item.seller_id,
        "shop_id": item.shop_id,
        "provider": config.LICENSE_PROVIDER_NAME,
        "key_type": payload.get("key_type") or "robot",
        "robot_name": payload.get("robot_name") or product.title or "",
    }


def _renew(db, client, notifier, order, item, product, user, previous, payload, row):
    duration, unit = payload["duration"], payload["unit"]
    grant = client.renew(build_renew_payload(previous.license_key, duration, unit, reactivate=True))

    expires_at = grant.expires_at
    if expires_at is None:
        now = utcnow()
        current = as_utc(previous.expires_at)
        base = current if current and current > now else now
        expires_at = add_duration(base, duration, unit)

    license_row = _store(
        db,
        row,
        license_key=previous.license_key,
        expires_at=expires_at,
        status="renewed",
        last_error=None,
        **_base_fields(order, item, product, payload),
    )
    logger.info(
        "license_renewed",
        order_id=order.id,
        product_id=product.id,
        expires_at=expires_at.isoformat(),
    )

    if notifier is not None:
        safe_send(
            notifier.send_license_renewed,
            to=user.email,
            full_name=user.full_name,
            product_title=product.title,
            license_key=license_row.license_key,
            expires_at=license_row.expires_at,
        )
    return LineOutcome("license", product.id, True, "renewed")


def _issue(db, client, notifier, order, item, product, user, payload, row):
    missing = missing_identity_fields(payload)
    if missing:
        raise MissingLicenseFields(missing)

    grant = client.issue(payload)

    if is_subscription(product):
        expires_at = grant.expires_at or add_duration(utcnow(), payload["duration"], payload["unit"])
    else:
        expires_at = None

    license_row = _store(
        db,
        row,
        license_key=grant.license_key,
        expires_at=expires_at,
        status="issued",
        last_error=None,
        **_base_fields(order, item, product, payload),
    )
    logger.info(
        "license_issued",
        order_id=order.id,
        product_id=product.id,
        lifetime=expires_at is None,
    )

    if notifier is not None:
        safe_send(
            notifier.send_license_issued,
            to=user.email,
            full_name=user.full_name,
            product_title=product.title,
            license_key=license_row.license_key,
            expires_at=license_row.expires_at,
        )
    return LineOutcome("license", product.id, True, "issued")


def run_licenses(
    db: Session,
    order_id: str,
    client: LicenseServiceClient = None,
    notifier=None,
    retry_failed: bool = False,
) -> List[LineOutcome]:
    order = db.get(Order, order_id)
    if order is None or order.status != "succeeded":
        return []

    user = db.get(User, order.user_id)
    if user is None:
        logger.warning("license_buyer_missing", order_id=order_id)
        return []

    client = client or LicenseServiceClient()
    outcomes = []

    for item in list(order.items):
        product_id = item.product_id

        row = (
            db.query(License)
            .filter(License.order_id == order.id, License.product_id == product_id)
            .first()
        )
        if row is not None and not (retry_failed and row.status == "failed"):
            outcomes.append(
                LineOutcome("license", product_id, row.status != "failed", "exists", row.last_error)
            )
            continue

        product = db.get(Product, product_id)
        if product is None or not needs_license(product):
            outcomes.append(LineOutcome("license", product_id, True, "skipped"))
            continue

        try:
            payload = build_issue_payload(user, product)
            previous = find_latest_key(db, order.user_id, product.id)

            if previous is not None and is_subscription(product):
                outcome = _renew(db, client, notifier, order, item, product, user, previous, payload, row)
            else:
                outcome = _issue(db, client, notifier, order, item, product, user, payload, row)
            outcomes.append(outcome)

        except Exception as e:
            db.rollback()
            logger.error(
                "license_failed",
                order_id=order.id,
                product_id=product_id,
                error=str(e),
                exc_info=True,
            )
            try:
                _store(
                    db,
                    row,
                    user_id=order.user_id,
                    order_id=order.id,
                    product_id=product_id,
                    seller_id=item.seller_id,
                    shop_id=item.shop_id,
                    status="failed",
                    last_error=str(e),
                )
            except SQLAlchemyError:
                db.rollback()
                logger.error("license_failure_not_recorded", order_id=order_id, product_id=product_id, exc_info=True)
            outcomes.append(LineOutcome("license", product_id, False, "failed", str(e)))

    return outcomes


def ensure_licenses(db: Session, order_id: str, client=None, notifier=None, retry_failed=False) -> bool:
    """True when any line of the order holds a license after this pass."""
    outcomes = run_licenses(db, order_id, client=client, notifier=notifier, retry_failed=retry_failed)
    return any(o.ok and o.action in ("issued", "renewed", "exists") for o in outcomes)
