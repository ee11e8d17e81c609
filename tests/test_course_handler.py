from conftest import make_user
from fulfillment.events import PaymentEvent, PaymentStatus
from fulfillment.handlers.course import CourseHandler
from fulfillment.models import CourseEnrollment


def course_event(user_id, course_id="course-1", reference="pi_course_1", status=PaymentStatus.SUCCESS):
    return PaymentEvent(
        provider="stripe",
        status=status,
        feature="course",
        reference=reference,
        metadata={"userId": user_id, "courseId": course_id},
    )


def test_enrolls_once(db):
    user = make_user(db)
    handler = CourseHandler()

    first = handler(course_event(user.id), db)
    second = handler(course_event(user.id, reference="pi_course_2"), db)

    assert first.claimed
    assert second.duplicate
    enrollment = db.query(CourseEnrollment).one()
    assert enrollment.dedupe_key == "stripe:pi_course_1"


def test_incomplete_or_unpaid_event_does_nothing(db):
    user = make_user(db)
    handler = CourseHandler()

    handler(course_event(user.id, status=PaymentStatus.PENDING), db)
    handler(PaymentEvent(provider="stripe", status=PaymentStatus.SUCCESS, feature="course",
                         metadata={"courseId": "course-1"}), db)

    assert db.query(CourseEnrollment).count() == 0
