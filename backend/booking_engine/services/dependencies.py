# backend/booking_engine/services/dependencies.py
"""
Dependency injection functions for services.

An HTTP layer obtains request-scoped services through these providers; the
session comes from ``get_db`` and is committed or rolled back per request.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from ..database import get_db
from .availability_resolver import AvailabilityResolver
from .availability_service import AvailabilityService
from .booking_transaction_service import BookingTransactionService
from .credit_ledger import CreditLedger
from .payment_gateway import PaymentGateway, StripePaymentGateway
from .refund_service import RefundService


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    """Process-wide Stripe gateway (configures the SDK once)."""
    return StripePaymentGateway()


def get_availability_resolver(db: Session = Depends(get_db)) -> AvailabilityResolver:
    """
    Dependency injection function for AvailabilityResolver.

    Usage in routes:
        resolver: AvailabilityResolver = Depends(get_availability_resolver)
    """
    return AvailabilityResolver(db)


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    """Weekly template and blocked time maintenance for instructor routes."""
    return AvailabilityService(db)


def get_credit_ledger(db: Session = Depends(get_db)) -> CreditLedger:
    return CreditLedger(db)


def get_refund_service(
    db: Session = Depends(get_db),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
) -> RefundService:
    return RefundService(db, payment_gateway=payment_gateway)


def get_booking_transaction_service(
    db: Session = Depends(get_db),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
) -> BookingTransactionService:
    """
    Dependency injection function for BookingTransactionService.

    Usage in routes:
        booking_service: BookingTransactionService = Depends(get_booking_transaction_service)
    """
    return BookingTransactionService(db, payment_gateway=payment_gateway)
