# backend/booking_engine/models/booking.py
"""
Booking model.

A booking occupies the half-open slot interval [start_slot, start_slot + duration)
on a UTC calendar date. Bookings are never physically deleted; cancellation is
a status transition so refund records can keep referencing them.
"""

from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.slots import SlotInterval
from ..database import Base

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    BOOKED = "booked"  # Student lesson
    BLOCKED = "blocked"  # Instructor self-block
    CANCELLED = "cancelled"


ACTIVE_BOOKING_STATUSES = (BookingStatus.BOOKED.value, BookingStatus.BLOCKED.value)


class Booking(Base):
    """
    Reservation of an instructor's time.

    Design: student_id is NULL for instructor self-blocks. A partial unique
    index over non-cancelled rows is the last-resort double-booking guard.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    instructor_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    student_id = Column(String(26), ForeignKey("users.id"), nullable=True)

    booking_date = Column(Date, nullable=False, index=True)
    start_slot = Column(Integer, nullable=False)
    duration = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.BOOKED.value, index=True)
    payment_method = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    rescheduled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)

    student = relationship("User", foreign_keys=[student_id])
    instructor = relationship("User", foreign_keys=[instructor_id])

    __table_args__ = (
        CheckConstraint(
            "status IN ('booked', 'blocked', 'cancelled')",
            name="ck_bookings_status",
        ),
        CheckConstraint("start_slot >= 0 AND start_slot <= 95", name="check_start_slot_range"),
        CheckConstraint("duration > 0", name="check_duration_positive"),
        CheckConstraint("start_slot + duration <= 96", name="check_end_slot_range"),
        Index(
            "uq_bookings_instructor_slot_active",
            "instructor_id",
            "booking_date",
            "start_slot",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("idx_bookings_instructor_date", "instructor_id", "booking_date"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Booking {self.id}: student={self.student_id}, "
            f"instructor={self.instructor_id}, date={self.booking_date}, "
            f"slots={self.start_slot}+{self.duration}, status={self.status}>"
        )

    @property
    def end_slot(self) -> int:
        return int(self.start_slot) + int(self.duration)

    @property
    def interval(self) -> SlotInterval:
        return SlotInterval(int(self.start_slot), self.end_slot)

    @property
    def is_active(self) -> bool:
        return self.status != BookingStatus.CANCELLED.value

    def cancel(self, cancelled_by_user_id: Optional[str]) -> None:
        """Cancel this booking."""
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = datetime.now(timezone.utc)
        self.cancelled_by_id = cancelled_by_user_id
        logger.info(f"Booking {self.id} cancelled by user {cancelled_by_user_id}")
