# backend/booking_engine/services/availability_resolver.py
"""
Availability Resolver for the booking engine.

Computes an instructor's open slot intervals for one UTC date:
1. Weekly template entries for the date's day of week
2. Minus blocked intervals that overlap the date's 24-hour window

Entries are resolved independently; adjacent entries are never merged, so a
booking must fit inside a single entry after blocks are removed.
"""

from datetime import date
import logging
from typing import List, Optional, Sequence, Union

from sqlalchemy.orm import Session

from ..core.slots import (
    SlotInterval,
    datetime_range_to_slots,
    day_of_week,
    day_window,
    parse_booking_date,
)
from ..repositories import RepositoryFactory
from ..repositories.availability_repository import AvailabilityRepository
from .base import BaseService

logger = logging.getLogger(__name__)


def subtract_blocks(
    entry: SlotInterval, blocks: Sequence[SlotInterval]
) -> List[SlotInterval]:
    """Remove every block from ``entry``, returning the ordered remainders."""
    remaining = [entry]
    for block in blocks:
        next_remaining: List[SlotInterval] = []
        for piece in remaining:
            next_remaining.extend(piece.subtract(block))
        remaining = next_remaining
        if not remaining:
            break
    return remaining


def contains_interval(
    open_intervals: Sequence[SlotInterval], proposed: SlotInterval
) -> Optional[SlotInterval]:
    """Return the open interval that fully contains ``proposed``, or None."""
    for interval in open_intervals:
        if interval.contains(proposed):
            return interval
    return None


class AvailabilityResolver(BaseService):
    """Resolves open intervals from the weekly template and blocked times."""

    def __init__(self, db: Session, repository: Optional[AvailabilityRepository] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_availability_repository(db)

    @BaseService.measure_operation("get_instructor_availability")
    def get_instructor_availability(
        self, instructor_id: str, target_date: Union[str, date]
    ) -> List[SlotInterval]:
        """
        Open intervals for an instructor on a date.

        Args:
            instructor_id: Instructor user ID
            target_date: ``date`` or strict ``YYYY-MM-DD`` string

        Returns:
            Ordered, non-overlapping open intervals. Empty when the instructor
            has no weekly entries for that weekday.
        """
        target = parse_booking_date(target_date)
        entries = self.repository.get_weekly_entries(instructor_id, day_of_week(target))
        if not entries:
            return []

        window_start, window_end = day_window(target)
        blocked_rows = self.repository.get_blocked_intervals_overlapping(
            instructor_id, window_start, window_end
        )
        blocks = [
            interval
            for interval in (
                datetime_range_to_slots(target, row.start_datetime, row.end_datetime)
                for row in blocked_rows
            )
            if interval is not None
        ]

        open_intervals: List[SlotInterval] = []
        for entry in entries:
            open_intervals.extend(subtract_blocks(entry.interval, blocks))

        open_intervals.sort()
        self.logger.debug(
            "Resolved availability",
            extra={
                "instructor_id": instructor_id,
                "date": target.isoformat(),
                "intervals": [str(interval) for interval in open_intervals],
            },
        )
        return open_intervals
