"""Automatic refund eligibility for student cancellations."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

from ..core.config import settings
from ..core.slots import slot_start_datetime
from ..models.booking import Booking


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefundPolicyEngine:
    """
    A booking qualifies for an automatic refund when strictly more than
    ``window_hours`` remain until its start. Exactly at the window it does not.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        window_hours: int | None = None,
    ) -> None:
        self._clock = clock or _utcnow
        self.window = timedelta(
            hours=settings.auto_refund_window_hours if window_hours is None else window_hours
        )

    def now(self) -> datetime:
        return self._clock()

    @staticmethod
    def booking_start(booking: Booking) -> datetime:
        return slot_start_datetime(booking.booking_date, int(booking.start_slot))

    def time_until_start(self, booking: Booking) -> timedelta:
        return self.booking_start(booking) - self.now()

    def is_eligible_for_automatic_refund(self, booking: Booking) -> bool:
        return self.time_until_start(booking) > self.window
