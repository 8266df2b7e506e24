# backend/booking_engine/models/availability.py
"""
Availability models.

Classes:
    WeeklyAvailabilityEntry: Recurring weekly open interval (day of week + slots)
    BlockedInterval: Absolute time range removed from a specific occurrence
"""

import logging

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.sql import func
import ulid

from ..core.slots import SlotInterval
from ..database import Base

logger = logging.getLogger(__name__)


class WeeklyAvailabilityEntry(Base):
    """Recurring open interval; day_of_week uses 0 = Sunday ... 6 = Saturday."""

    __tablename__ = "instructor_weekly_availability"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    instructor_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_slot = Column(Integer, nullable=False)
    duration = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="check_day_of_week"),
        CheckConstraint("start_slot >= 0 AND start_slot <= 95", name="check_weekly_start_slot"),
        CheckConstraint(
            "duration > 0 AND start_slot + duration <= 96", name="check_weekly_duration"
        ),
        Index("idx_weekly_availability_instructor_day", "instructor_id", "day_of_week"),
    )

    @property
    def interval(self) -> SlotInterval:
        return SlotInterval(int(self.start_slot), int(self.start_slot) + int(self.duration))

    def __repr__(self) -> str:
        return f"<WeeklyAvailabilityEntry day={self.day_of_week} {self.interval}>"


class BlockedInterval(Base):
    """Instructor time off between two absolute UTC timestamps."""

    __tablename__ = "instructor_blocked_times"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    instructor_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    start_datetime = Column(DateTime(timezone=True), nullable=False)
    end_datetime = Column(DateTime(timezone=True), nullable=False)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("end_datetime > start_datetime", name="check_blocked_time_order"),
        Index("idx_blocked_times_instructor_start", "instructor_id", "start_datetime"),
    )

    def __repr__(self) -> str:
        return f"<BlockedInterval {self.start_datetime} - {self.end_datetime} ({self.reason or 'No reason'})>"
