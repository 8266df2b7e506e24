"""
Database models for the booking engine.

The models are organized by functionality:
- Users and instructor pricing profiles
- Weekly availability and blocked intervals
- Bookings
- Credit pools and credit usage
- Financial transactions and refunds
- Durable background jobs
"""

from .availability import BlockedInterval, WeeklyAvailabilityEntry
from .background_job import BackgroundJob, JobStatus
from .booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from .credit import CreditPool, CreditUsageRecord
from .refund import Refund, RefundMethod
from .transaction import PaymentMethod, Transaction, TransactionStatus
from .user import InPersonPaymentOverride, InstructorProfile, User

__all__ = [
    "ACTIVE_BOOKING_STATUSES",
    "BackgroundJob",
    "BlockedInterval",
    "Booking",
    "BookingStatus",
    "CreditPool",
    "CreditUsageRecord",
    "InPersonPaymentOverride",
    "InstructorProfile",
    "JobStatus",
    "PaymentMethod",
    "Refund",
    "RefundMethod",
    "Transaction",
    "TransactionStatus",
    "User",
    "WeeklyAvailabilityEntry",
]
