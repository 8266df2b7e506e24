# backend/booking_engine/core/slots.py
"""
Slot calendar arithmetic.

A UTC day is divided into 96 slots of 15 minutes; slot 0 starts at 00:00 UTC.
Intervals are half-open: ``[start_slot, end_slot)``. Everything in this module
is pure and side-effect free.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
import math
from typing import List, Optional, Tuple, Union

from .constants import MAX_SLOT_INDEX, SLOT_MINUTES, SLOTS_PER_DAY, SLOTS_PER_HOUR
from .exceptions import InvalidSlotException, SlotRangeExceededException, ValidationException


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_slot(slot: object) -> int:
    """Return ``slot`` if it is an integer in [0, 95], else raise InvalidSlotException."""
    if not _is_int(slot) or not 0 <= slot <= MAX_SLOT_INDEX:  # type: ignore[operator]
        raise InvalidSlotException(slot)
    return slot  # type: ignore[return-value]


def to_slot(hour: int, minute: int) -> int:
    """Convert a UTC clock time to its slot index (minutes floor to the slot grid)."""
    if not _is_int(hour) or not _is_int(minute) or not 0 <= minute < 60:
        raise InvalidSlotException(f"{hour}:{minute}")
    return validate_slot(hour * SLOTS_PER_HOUR + minute // SLOT_MINUTES)


def to_clock(slot: int) -> Tuple[int, int]:
    """Convert a slot index to ``(hour, minute)``."""
    validate_slot(slot)
    return slot // SLOTS_PER_HOUR, (slot % SLOTS_PER_HOUR) * SLOT_MINUTES


def end_slot(start_slot: int, duration: int) -> int:
    """
    Compute the exclusive end slot of an interval.

    Raises:
        InvalidSlotException: start_slot outside [0, 95]
        ValidationException: duration is not a positive integer
        SlotRangeExceededException: interval runs past the end of the day
    """
    validate_slot(start_slot)
    if not _is_int(duration) or duration < 1:
        raise ValidationException(
            "Invalid duration. Must be a positive integer.",
            code="INVALID_DURATION",
            details={"duration": duration},
        )
    end = start_slot + duration
    if end > SLOTS_PER_DAY:
        raise SlotRangeExceededException(start_slot, duration)
    return end


def format_slot(slot: int) -> str:
    """Render a slot boundary as HH:MM; 96 renders as 24:00 for end bounds."""
    if slot == SLOTS_PER_DAY:
        return "24:00"
    hour, minute = to_clock(slot)
    return f"{hour:02d}:{minute:02d}"


def duration_minutes(duration: int) -> int:
    return duration * SLOT_MINUTES


def parse_booking_date(value: Union[str, date]) -> date:
    """Parse a strict YYYY-MM-DD string (dates pass through unchanged)."""
    if isinstance(value, datetime):
        raise ValidationException(
            "Invalid date format. Expected YYYY-MM-DD.", code="INVALID_DATE"
        )
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationException(
            "Invalid date format. Expected YYYY-MM-DD.", code="INVALID_DATE"
        )
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        raise ValidationException(
            "Invalid date format. Expected YYYY-MM-DD.",
            code="INVALID_DATE",
            details={"date": value},
        )
    # Reject compact and week-date forms that fromisoformat also accepts
    if parsed.isoformat() != value:
        raise ValidationException(
            "Invalid date format. Expected YYYY-MM-DD.",
            code="INVALID_DATE",
            details={"date": value},
        )
    return parsed


def day_of_week(target: date) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday."""
    return (target.weekday() + 1) % 7


def day_window(target: date) -> Tuple[datetime, datetime]:
    """Return the UTC ``[start, end)`` datetimes covering ``target``."""
    start = datetime.combine(target, time(0, 0), tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def slot_start_datetime(target: date, slot: int) -> datetime:
    """UTC datetime at which ``slot`` begins on ``target``."""
    hour, minute = to_clock(slot)
    return datetime.combine(target, time(hour, minute), tzinfo=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def datetime_range_to_slots(
    target: date, start: datetime, end: datetime
) -> Optional["SlotInterval"]:
    """
    Project an absolute datetime range onto the slot grid of ``target``.

    The range is clipped to the day window. Partially covered slots count as
    covered (start floors, end ceils). Returns None when nothing of the range
    falls on ``target``.
    """
    day_start, day_end = day_window(target)
    start_utc = max(as_utc(start), day_start)
    end_utc = min(as_utc(end), day_end)
    if start_utc >= end_utc:
        return None

    slot_seconds = SLOT_MINUTES * 60
    first = math.floor((start_utc - day_start).total_seconds() / slot_seconds)
    last = math.ceil((end_utc - day_start).total_seconds() / slot_seconds)
    return SlotInterval(max(first, 0), min(last, SLOTS_PER_DAY))


@dataclass(frozen=True, order=True)
class SlotInterval:
    """Half-open slot interval ``[start_slot, end_slot)``."""

    start_slot: int
    end_slot: int

    def __post_init__(self) -> None:
        if not 0 <= self.start_slot < self.end_slot <= SLOTS_PER_DAY:
            raise ValidationException(
                f"Invalid slot interval [{self.start_slot}, {self.end_slot})",
                code="INVALID_INTERVAL",
            )

    @classmethod
    def from_duration(cls, start_slot: int, duration: int) -> "SlotInterval":
        return cls(start_slot, end_slot(start_slot, duration))

    @property
    def duration(self) -> int:
        return self.end_slot - self.start_slot

    def overlaps(self, other: "SlotInterval") -> bool:
        # Touching endpoints do not overlap
        return self.start_slot < other.end_slot and other.start_slot < self.end_slot

    def contains(self, other: "SlotInterval") -> bool:
        return self.start_slot <= other.start_slot and other.end_slot <= self.end_slot

    def subtract(self, other: "SlotInterval") -> List["SlotInterval"]:
        """Remove ``other`` from this interval, leaving zero, one or two pieces."""
        if not self.overlaps(other):
            return [self]
        pieces: List[SlotInterval] = []
        if self.start_slot < other.start_slot:
            pieces.append(SlotInterval(self.start_slot, other.start_slot))
        if other.end_slot < self.end_slot:
            pieces.append(SlotInterval(other.end_slot, self.end_slot))
        return pieces

    def label(self) -> str:
        return f"{format_slot(self.start_slot)}-{format_slot(self.end_slot)}"

    def __str__(self) -> str:
        return self.label()
