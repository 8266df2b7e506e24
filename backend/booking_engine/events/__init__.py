"""Domain events and the publisher that queues them for the worker."""

from .booking_events import (
    BookingCancelled,
    BookingConfirmed,
    BookingRescheduled,
    CreditsExhausted,
    CreditsLow,
    RefundIssued,
)
from .publisher import EventPublisher

__all__ = [
    "BookingCancelled",
    "BookingConfirmed",
    "BookingRescheduled",
    "CreditsExhausted",
    "CreditsLow",
    "EventPublisher",
    "RefundIssued",
]
