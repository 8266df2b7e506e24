"""Event handlers - process domain events from the job queue."""
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.slots import format_slot
from ..models.booking import Booking
from ..repositories.booking_repository import BookingRepository
from ..services.notification_sink import LoggingNotificationSink, NotificationSink

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]


def _load_booking(db: Session, booking_id: str) -> Optional[Booking]:
    return BookingRepository(db).get_by_id(booking_id)


def _participants(booking: Booking) -> List[str]:
    return [user_id for user_id in (booking.student_id, booking.instructor_id) if user_id]


def _lesson_summary(booking: Booking) -> Payload:
    return {
        "booking_id": booking.id,
        "date": booking.booking_date.isoformat(),
        "start": format_slot(booking.start_slot),
        "end": format_slot(booking.end_slot),
    }


def handle_booking_confirmed(payload: Payload, db: Session, sink: NotificationSink) -> None:
    """Send booking confirmation to both participants."""
    booking = _load_booking(db, payload["booking_id"])
    if not booking:
        logger.warning("Booking %s not found for confirmation", payload["booking_id"])
        return

    message = {**_lesson_summary(booking), "payment_method": payload.get("payment_method")}
    for recipient in _participants(booking):
        sink.send("booking_confirmed", recipient, message)
    logger.info("Sent booking confirmation for %s", booking.id)


def handle_booking_rescheduled(payload: Payload, db: Session, sink: NotificationSink) -> None:
    booking = _load_booking(db, payload["booking_id"])
    if not booking:
        logger.warning("Booking %s not found for reschedule notice", payload["booking_id"])
        return

    message = {
        **_lesson_summary(booking),
        "previous_date": payload.get("previous_date"),
        "previous_start": format_slot(int(payload["previous_start_slot"])),
    }
    for recipient in _participants(booking):
        sink.send("booking_rescheduled", recipient, message)
    logger.info("Sent reschedule notification for %s", booking.id)


def handle_booking_cancelled(payload: Payload, db: Session, sink: NotificationSink) -> None:
    """Send cancellation notification."""
    booking = _load_booking(db, payload["booking_id"])
    if not booking:
        logger.warning("Booking %s not found for cancellation notice", payload["booking_id"])
        return

    message = {
        **_lesson_summary(booking),
        "cancelled_by": payload.get("cancelled_by"),
        "refund_method": payload.get("refund_method"),
        "refund_amount": payload.get("refund_amount"),
    }
    for recipient in _participants(booking):
        sink.send("booking_cancelled", recipient, message)
    logger.info("Sent cancellation notification for %s", booking.id)


def handle_refund_issued(payload: Payload, db: Session, sink: NotificationSink) -> None:
    booking = _load_booking(db, payload["booking_id"])
    if not booking or not booking.student_id:
        logger.warning("No student to notify for refund on %s", payload["booking_id"])
        return

    sink.send(
        "refund_issued",
        booking.student_id,
        {
            **_lesson_summary(booking),
            "method": payload.get("method"),
            "amount": payload.get("amount"),
        },
    )
    logger.info("Sent refund notification for %s", booking.id)


def handle_credits_low(payload: Payload, db: Session, sink: NotificationSink) -> None:
    sink.send(
        "credits_low",
        payload["user_id"],
        {"balance": payload["balance"], "threshold": payload.get("threshold")},
    )


def handle_credits_exhausted(payload: Payload, db: Session, sink: NotificationSink) -> None:
    sink.send(
        "credits_exhausted",
        payload["user_id"],
        {"lessons_completed": payload.get("lessons_completed", 0)},
    )


# Registry of event type -> handler function
EVENT_HANDLERS: Dict[str, Callable[[Payload, Session, NotificationSink], None]] = {
    "event:BookingConfirmed": handle_booking_confirmed,
    "event:BookingRescheduled": handle_booking_rescheduled,
    "event:BookingCancelled": handle_booking_cancelled,
    "event:RefundIssued": handle_refund_issued,
    "event:CreditsLow": handle_credits_low,
    "event:CreditsExhausted": handle_credits_exhausted,
}


def process_event(
    job_type: str, payload: Payload, db: Session, sink: Optional[NotificationSink] = None
) -> bool:
    """
    Process an event job.

    Returns True if handled, False if not an event job.
    """
    if not job_type.startswith("event:"):
        return False

    handler = EVENT_HANDLERS.get(job_type)
    if not handler:
        logger.warning("No handler for event type: %s", job_type)
        return True  # Consumed but unhandled

    handler(payload, db, sink or LoggingNotificationSink())
    return True
