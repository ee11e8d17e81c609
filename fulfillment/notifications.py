"""
Outbound buyer / seller emails through a transactional mail HTTP API.

Delivery is best-effort: callers go through ``safe_send`` so a mail outage
never touches an order, payout or license that is already committed.
"""
from datetime import datetime
from typing import List, Optional

import httpx
import structlog

from fulfillment import config
from fulfillment.errors import NotificationError

logger = structlog.get_logger(__name__)


def safe_send(send, **fields) -> bool:
    try:
        send(**fields)
        return True
    except Exception as e:
        logger.error(
            "notification_failed",
            notification=getattr(send, "__name__", str(send)),
            to=fields.get("to"),
            error=str(e),
        )
        return False


def _fmt_expiry(expires_at: Optional[datetime]) -> str:
    return expires_at.strftime("%Y-%m-%d") if expires_at else "lifetime"


class Notifier:
    def __init__(self, api_url=None, api_key=None, sender=None, timeout=None, transport=None):
        self.api_url = api_url if api_url is not None else config.MAILER_API_URL
        self.api_key = api_key if api_key is not None else config.MAILER_API_KEY
        self.sender = sender or config.MAILER_SENDER
        self.timeout = timeout or config.MAILER_TIMEOUT
        self.transport = transport

    def send(self, template: str, to: str, subject: str, params: dict) -> None:
        if not to:
            raise NotificationError(f"No recipient for {template}")
        if not self.api_url:
            logger.info("mail_skipped", template=template, to=to, reason="mailer not configured")
            return

        message = {
            "sender": self.sender,
            "to": [to],
            "subject": subject,
            "template": template,
            "params": params,
        }
        headers = {"api-key": self.api_key} if self.api_key else {}

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.api_url, json=message, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Mail {template} to {to} failed: {e}") from e

        logger.info("mail_sent", template=template, to=to)

    def send_license_issued(self, to, full_name, product_title, license_key, expires_at=None):
        self.send("license_issued", to, f"Your license for {product_title}", {
            "fullName": full_name,
            "productTitle": product_title,
            "licenseKey": license_key,
            "expiresAt": _fmt_expiry(expires_at),
            "isLifetime": expires_at is None,
        })

    def send_license_renewed(self, to, full_name, product_title, license_key, expires_at=None):
        self.send("license_renewed", to, f"{product_title}: license renewed", {
            "fullName": full_name,
            "productTitle": product_title,
            "licenseKey": license_key,
            "expiresAt": _fmt_expiry(expires_at),
        })

    def send_order_confirmation(self, to, full_name, product_title):
        self.send("order_success", to, "Your order is confirmed", {
            "fullName": full_name,
            "productTitle": product_title,
        })

    def send_crypto_approved(self, to, full_name, product_title):
        self.send("crypto_approved", to, "Your crypto payment was approved", {
            "fullName": full_name,
            "productTitle": product_title,
        })

    def send_crypto_rejected(self, to, full_name, product_title, reason):
        self.send("crypto_rejected", to, "Your crypto payment was rejected", {
            "fullName": full_name,
            "productTitle": product_title,
            "reason": reason,
        })

    def send_sale_notification(self, to, full_name, customer_name, items: List[dict], total_earnings: str):
        self.send("sale_notification", to, "You made a sale", {
            "fullName": full_name,
            "customerName": customer_name,
            "items": items,
            "totalEarnings": total_earnings,
        })


_notifier = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = Notifier()
    return _notifier
