from typing import Callable, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from fulfillment.errors import UnroutableEvent
from fulfillment.events import COURSE, MARKETPLACE, SUBSCRIPTION, PaymentEvent
from fulfillment.handlers.course import CourseHandler
from fulfillment.handlers.marketplace import MarketplaceHandler
from fulfillment.handlers.subscription import SubscriptionHandler

logger = structlog.get_logger(__name__)

Handler = Callable[[PaymentEvent, Session], object]


class Dispatcher:
    """Routes a PaymentEvent to the one handler owning its feature."""

    def __init__(self, handlers: Optional[Dict[str, Handler]] = None):
        self.handlers: Dict[str, Handler] = dict(handlers or {})

    def register(self, feature: str, handler: Handler) -> None:
        self.handlers[feature] = handler

    def resolve(self, event: PaymentEvent) -> Handler:
        feature = (event.feature or "").strip().lower()
        handler = self.handlers.get(feature) if feature else None
        if handler is None:
            raise UnroutableEvent(event.feature)
        return handler

    def dispatch(self, event: PaymentEvent, db: Session):
        try:
            handler = self.resolve(event)
        except UnroutableEvent as e:
            # Left unconsumed so a later trigger can still deliver it.
            logger.warning(
                "payment_event_unroutable",
                feature=e.feature,
                provider=event.provider,
                reference=event.reference,
                status=event.status.value,
            )
            return None

        logger.info(
            "payment_event_dispatched",
            feature=event.feature,
            provider=event.provider,
            reference=event.reference,
            status=event.status.value,
        )
        return handler(event, db)


def default_dispatcher(notifier=None, license_client=None) -> Dispatcher:
    return Dispatcher({
        MARKETPLACE: MarketplaceHandler(notifier=notifier, license_client=license_client),
        SUBSCRIPTION: SubscriptionHandler(),
        COURSE: CourseHandler(),
    })


_dispatcher = None


def get_dispatcher() -> Dispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = default_dispatcher()
    return _dispatcher
