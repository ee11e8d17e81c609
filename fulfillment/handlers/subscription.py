import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment import config
from fulfillment.dates import add_duration, as_utc, utcnow
from fulfillment.events import PaymentEvent, PaymentStatus
from fulfillment.models import AffiliateCommission, PlanAccess, SubscriptionPeriod, User
from fulfillment.money import percent_of, to_cents
from fulfillment.outcomes import FulfillmentResult

logger = structlog.get_logger(__name__)


class SubscriptionHandler:
    """
    Paid platform subscription: each successful payment adds one month of access.

    Deduplicated on "<provider>:<stable reference>", stored unique on the
    period row, so a redelivered event never extends access twice.
    """

    def __init__(self, months: int = 1, affiliate_rate: float = None):
        self.months = months
        self.affiliate_rate = config.SUBSCRIPTION_AFFILIATE_RATE if affiliate_rate is None else affiliate_rate

    def __call__(self, event: PaymentEvent, db: Session) -> FulfillmentResult:
        user_id = event.meta("userId", "user_id")
        if not user_id:
            logger.warning("subscription_event_missing_user", provider=event.provider)
            return FulfillmentResult(order_id=None)

        if event.status != PaymentStatus.SUCCESS:
            logger.info("subscription_event_ignored", user_id=user_id, status=event.status.value)
            return FulfillmentResult(order_id=None)

        dedupe_key = event.dedupe_key
        if not dedupe_key:
            # Without a stable reference every redelivery would look new.
            logger.warning("subscription_event_missing_reference", user_id=user_id, provider=event.provider)
            return FulfillmentResult(order_id=None)

        if db.query(SubscriptionPeriod.id).filter(SubscriptionPeriod.dedupe_key == dedupe_key).first():
            logger.info("subscription_duplicate_ignored", dedupe_key=dedupe_key)
            return FulfillmentResult(order_id=None, duplicate=True)

        if db.get(User, user_id) is None:
            logger.warning("subscription_user_not_found", user_id=user_id)
            return FulfillmentResult(order_id=None)

        now = utcnow()
        access = db.get(PlanAccess, user_id)
        current_end = as_utc(access.valid_until) if access else None
        period_start = current_end if current_end and current_end > now else now
        period_end = add_duration(period_start, self.months, "months")

        db.add(SubscriptionPeriod(
            user_id=user_id,
            provider=event.provider,
            reference=event.reference,
            dedupe_key=dedupe_key,
            period_start=period_start,
            period_end=period_end,
            amount=event.amount,
            currency=event.currency,
            raw=event.raw,
        ))
        if access is None:
            db.add(PlanAccess(user_id=user_id, started_at=period_start, valid_until=period_end))
        else:
            access.valid_until = period_end

        try:
            db.commit()
        except IntegrityError:
            # Lost a race with a concurrent delivery of the same event.
            db.rollback()
            logger.info("subscription_duplicate_ignored", dedupe_key=dedupe_key)
            return FulfillmentResult(order_id=None, duplicate=True)

        logger.info(
            "subscription_extended",
            user_id=user_id,
            period_start=period_start.isoformat(),
            period_end=period_end.isoformat(),
        )
        self.credit_referrer(db, user_id, event, dedupe_key)
        return FulfillmentResult(order_id=None, claimed=True, status="active")

    def credit_referrer(self, db: Session, user_id: str, event: PaymentEvent, dedupe_key: str) -> None:
        user = db.get(User, user_id)
        if user is None or not user.referred_by:
            return

        amount_cents = percent_of(to_cents(event.amount), self.affiliate_rate * 100)
        if amount_cents <= 0:
            return

        db.add(AffiliateCommission(
            referrer_id=user.referred_by,
            user_id=user_id,
            dedupe_key=dedupe_key,
            rate=self.affiliate_rate,
            amount_cents=amount_cents,
            currency=event.currency,
        ))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return
        logger.info("affiliate_credited", referrer_id=user.referred_by, amount_cents=amount_cents)
