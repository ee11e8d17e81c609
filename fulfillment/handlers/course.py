import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment.events import PaymentEvent, PaymentStatus
from fulfillment.models import CourseEnrollment
from fulfillment.outcomes import FulfillmentResult

logger = structlog.get_logger(__name__)


class CourseHandler:
    """Enrolls the buyer once per (user, course)."""

    def __call__(self, event: PaymentEvent, db: Session) -> FulfillmentResult:
        course_id = event.meta("courseId", "course_id")
        user_id = event.meta("userId", "user_id")
        if not course_id or not user_id:
            logger.warning("course_event_incomplete", course_id=course_id, user_id=user_id)
            return FulfillmentResult(order_id=None)

        if event.status != PaymentStatus.SUCCESS:
            return FulfillmentResult(order_id=None)

        existing = (
            db.query(CourseEnrollment.id)
            .filter(CourseEnrollment.user_id == user_id, CourseEnrollment.course_id == course_id)
            .first()
        )
        if existing:
            logger.info("course_enrollment_exists", user_id=user_id, course_id=course_id)
            return FulfillmentResult(order_id=None, duplicate=True)

        db.add(CourseEnrollment(user_id=user_id, course_id=course_id, dedupe_key=event.dedupe_key))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return FulfillmentResult(order_id=None, duplicate=True)

        logger.info("course_enrolled", user_id=user_id, course_id=course_id)
        return FulfillmentResult(order_id=None, claimed=True, status="enrolled")
