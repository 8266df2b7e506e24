# backend/booking_engine/services/conflict_checker.py
"""
Conflict Checker Service for the booking engine.

Two half-open intervals [a, b) and [c, d) conflict iff a < d and c < b, so
bookings that only touch at an endpoint never conflict. The checker reads
bookings but never mutates state.
"""

from datetime import date
import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..core.slots import SlotInterval
from ..models.booking import Booking
from ..repositories import RepositoryFactory
from ..repositories.conflict_checker_repository import ConflictCheckerRepository
from .base import BaseService

logger = logging.getLogger(__name__)


def find_conflicts(proposed: SlotInterval, bookings: Iterable[Booking]) -> List[Booking]:
    """Return the active bookings whose interval overlaps ``proposed``."""
    return [
        booking
        for booking in bookings
        if booking.is_active and proposed.overlaps(booking.interval)
    ]


def has_conflict(proposed: SlotInterval, bookings: Iterable[Booking]) -> bool:
    return bool(find_conflicts(proposed, bookings))


class ConflictChecker(BaseService):
    """
    Service for checking booking conflicts.

    Centralizes conflict detection so booking and reschedule share one rule.
    """

    def __init__(self, db: Session, repository: Optional[ConflictCheckerRepository] = None):
        """
        Initialize conflict checker service.

        Args:
            db: Database session
            repository: Optional ConflictCheckerRepository instance
        """
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_conflict_checker_repository(db)

    @BaseService.measure_operation("check_booking_conflicts")
    def check_booking_conflicts(
        self,
        instructor_id: str,
        check_date: date,
        proposed: SlotInterval,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Find bookings that overlap a proposed interval.

        Args:
            instructor_id: The instructor to check
            check_date: The date to check
            proposed: Interval being requested
            exclude_booking_id: Optional booking ID to exclude (reschedule)

        Returns:
            Conflicting bookings, empty when the interval is free
        """
        bookings = self.repository.get_bookings_for_conflict_check(
            instructor_id, check_date, exclude_booking_id
        )
        conflicts = find_conflicts(proposed, bookings)

        if conflicts:
            self.logger.warning(
                f"Found {len(conflicts)} booking conflicts for {instructor_id} "
                f"on {check_date} at {proposed}"
            )

        return conflicts

    def check_time_conflicts(
        self,
        instructor_id: str,
        check_date: date,
        proposed: SlotInterval,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        """True if any active booking overlaps ``proposed``."""
        return bool(
            self.check_booking_conflicts(instructor_id, check_date, proposed, exclude_booking_id)
        )
