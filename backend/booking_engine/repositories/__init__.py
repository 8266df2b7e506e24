# backend/booking_engine/repositories/__init__.py
"""
Repository Pattern Implementation for the booking engine.

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Shared get, create and flush for one model
- RepositoryFactory: Factory for creating repository instances
- AvailabilityRepository: Weekly template and blocked intervals
- ConflictCheckerRepository: Active bookings for an instructor/date
- CreditRepository: Credit pools, guarded decrements and usage records
- BackgroundJobRepository: Durable notification queue with dead-lettering

Usage:
    from booking_engine.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_credit_repository(db)
    total, next_expiry = repository.get_balance(user_id=..., duration_minutes=30, today=...)
"""

from .availability_repository import AvailabilityRepository
from .background_job_repository import BackgroundJobRepository
from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .conflict_checker_repository import ConflictCheckerRepository
from .credit_repository import CreditRepository
from .factory import RepositoryFactory
from .refund_repository import RefundRepository
from .transaction_repository import TransactionRepository
from .user_repository import UserRepository

__all__ = [
    "AvailabilityRepository",
    "BackgroundJobRepository",
    "BaseRepository",
    "BookingRepository",
    "ConflictCheckerRepository",
    "CreditRepository",
    "RefundRepository",
    "RepositoryFactory",
    "TransactionRepository",
    "UserRepository",
]
