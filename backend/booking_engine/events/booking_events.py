"""Booking and credit domain events."""
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional


@dataclass
class BookingConfirmed:
    """Fired after a booking commits."""

    booking_id: str
    instructor_id: str
    student_id: Optional[str]
    booking_date: date
    start_slot: int
    duration: int
    payment_method: Optional[str]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingRescheduled:
    """Fired after a booking moves to a new date or slot."""

    booking_id: str
    previous_date: date
    previous_start_slot: int
    booking_date: date
    start_slot: int
    rescheduled_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCancelled:
    """Fired after a booking is cancelled."""

    booking_id: str
    cancelled_by: str  # 'student', 'instructor' or 'admin'
    cancelled_at: datetime
    refund_method: Optional[str] = None
    refund_amount: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RefundIssued:
    """Fired after a refund commits."""

    booking_id: str
    refund_id: str
    method: str
    amount: str
    refunded_by: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CreditsLow:
    """Fired when a user's balance drops to the low-credit threshold or below."""

    user_id: str
    balance: int
    threshold: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CreditsExhausted:
    """Fired when a user's last credit is used."""

    user_id: str
    lessons_completed: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
