# backend/booking_engine/services/availability_service.py
"""
Availability Service for the booking engine.

Instructor-facing maintenance of the weekly template and blocked time. Every
write takes the instructor row lock first, so it serializes with booking
creation and with other availability writes for the same instructor.

Existing bookings are never touched: narrowing availability only affects
bookings made afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundException, ValidationException
from ..core.slots import SlotInterval, as_utc
from ..models.availability import BlockedInterval, WeeklyAvailabilityEntry
from ..repositories import RepositoryFactory
from ..repositories.availability_repository import AvailabilityRepository
from .base import BaseService

logger = logging.getLogger(__name__)

ALL_DAYS = tuple(range(7))
MAX_REASON_LENGTH = 255


@dataclass(frozen=True)
class WeeklySlot:
    """One recurring open interval; day_of_week uses 0 = Sunday ... 6 = Saturday."""

    day_of_week: int
    start_slot: int
    duration: int


def _validate_day(day: object) -> int:
    if not isinstance(day, int) or isinstance(day, bool) or day not in ALL_DAYS:
        raise ValidationException(
            "Invalid day of week. Must be an integer from 0 (Sunday) to 6 (Saturday).",
            code="INVALID_DAY_OF_WEEK",
            details={"day_of_week": day},
        )
    return day


def validate_weekly_slots(slots: Sequence[WeeklySlot], days: Iterable[int]) -> None:
    """
    Check every slot is well formed, falls on one of ``days`` and does not
    overlap another slot of the same weekday. Touching slots are allowed.
    """
    allowed = set(days)
    by_day: dict = {}
    for slot in slots:
        day = _validate_day(slot.day_of_week)
        if day not in allowed:
            raise ValidationException(
                "Entry falls on a weekday that is not being replaced",
                code="DAY_NOT_REPLACED",
                details={"day_of_week": day},
            )
        interval = SlotInterval.from_duration(slot.start_slot, slot.duration)
        by_day.setdefault(day, []).append(interval)

    for day, intervals in by_day.items():
        intervals.sort()
        for previous, current in zip(intervals, intervals[1:]):
            if current.overlaps(previous):
                raise ValidationException(
                    "Weekly entries overlap",
                    code="OVERLAPPING_AVAILABILITY",
                    details={"day_of_week": day, "entries": [str(previous), str(current)]},
                )


class AvailabilityService(BaseService):
    """Service owning writes to the weekly template and blocked intervals."""

    def __init__(self, db: Session, repository: Optional[AvailabilityRepository] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_availability_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)

    def _lock_instructor(self, instructor_id: str) -> None:
        if self.user_repository.lock_instructor_profile(instructor_id) is None:
            raise NotFoundException(
                f"Instructor {instructor_id} not found", code="INSTRUCTOR_NOT_FOUND"
            )

    # Weekly template

    def get_weekly_availability(self, instructor_id: str) -> List[WeeklyAvailabilityEntry]:
        return self.repository.get_weekly_template(instructor_id)

    @BaseService.measure_operation("set_weekly_availability")
    def set_weekly_availability(
        self,
        instructor_id: str,
        entries: Sequence[WeeklySlot],
        days: Optional[Iterable[int]] = None,
    ) -> List[WeeklyAvailabilityEntry]:
        """
        Replace the recurring entries of whole weekdays in one unit.

        Args:
            instructor_id: Instructor user ID
            entries: New entries; every entry must fall on one of ``days``
            days: Weekdays to replace. Defaults to the whole week, so weekdays
                without entries are cleared.

        Returns:
            The instructor's full weekly template after the change

        Raises:
            ValidationException: Malformed, misplaced or overlapping entries
            NotFoundException: Unknown instructor
        """
        target_days = sorted({_validate_day(day) for day in (ALL_DAYS if days is None else days)})
        validate_weekly_slots(entries, target_days)

        with self.transaction():
            self._lock_instructor(instructor_id)
            removed = self.repository.delete_weekly_entries(instructor_id, target_days)
            for slot in entries:
                self.repository.create_weekly_entry(
                    instructor_id, slot.day_of_week, slot.start_slot, slot.duration
                )

        self.log_operation(
            "set_weekly_availability",
            instructor_id=instructor_id,
            days=target_days,
            entries_removed=removed,
            entries_added=len(entries),
        )
        return self.repository.get_weekly_template(instructor_id)

    # Blocked time

    def get_blocked_intervals(
        self, instructor_id: str, window_start: datetime, window_end: datetime
    ) -> List[BlockedInterval]:
        return self.repository.get_blocked_intervals_overlapping(
            instructor_id, as_utc(window_start), as_utc(window_end)
        )

    @BaseService.measure_operation("add_blocked_interval")
    def add_blocked_interval(
        self,
        instructor_id: str,
        start: datetime,
        end: datetime,
        reason: Optional[str] = None,
    ) -> BlockedInterval:
        """
        Block ``[start, end)`` for an instructor. Naive datetimes are read as UTC.

        Raises:
            ValidationException: Not datetimes, empty range or reason too long
            NotFoundException: Unknown instructor
        """
        if not isinstance(start, datetime) or not isinstance(end, datetime):
            raise ValidationException(
                "Blocked time bounds must be datetimes", code="INVALID_BLOCKED_TIME"
            )
        start_utc, end_utc = as_utc(start), as_utc(end)
        if start_utc >= end_utc:
            raise ValidationException(
                "Blocked time must end after it starts",
                code="INVALID_BLOCKED_TIME",
                details={"start": start_utc.isoformat(), "end": end_utc.isoformat()},
            )
        if reason is not None and len(reason) > MAX_REASON_LENGTH:
            raise ValidationException(
                f"Reason must be at most {MAX_REASON_LENGTH} characters",
                code="INVALID_BLOCKED_TIME",
            )

        with self.transaction():
            self._lock_instructor(instructor_id)
            block = self.repository.create_blocked_interval(
                instructor_id, start_utc, end_utc, reason
            )

        self.log_operation("add_blocked_interval", instructor_id=instructor_id, block_id=block.id)
        return block

    @BaseService.measure_operation("remove_blocked_interval")
    def remove_blocked_interval(self, instructor_id: str, block_id: str) -> None:
        """
        Delete a blocked interval owned by ``instructor_id``.

        Raises:
            NotFoundException: No such block for this instructor
        """
        with self.transaction():
            self._lock_instructor(instructor_id)
            block = self.repository.get_blocked_interval(block_id)
            if block is None or block.instructor_id != instructor_id:
                raise NotFoundException(
                    f"Blocked interval {block_id} not found",
                    code="BLOCKED_INTERVAL_NOT_FOUND",
                )
            self.repository.delete_blocked_interval(block)

        self.log_operation(
            "remove_blocked_interval", instructor_id=instructor_id, block_id=block_id
        )
