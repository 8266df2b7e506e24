# backend/booking_engine/core/exceptions.py
"""
Domain-specific exceptions for the booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException carrying the message, code and details."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Slot calendar


class InvalidSlotException(ValidationException):
    """Raised when a slot index falls outside the 0-95 grid."""

    def __init__(self, slot: Any):
        super().__init__(
            message=f"Invalid slot {slot}. Must be between 0 and 95.",
            code="INVALID_SLOT",
            details={"slot": slot},
        )


class SlotRangeExceededException(ValidationException):
    """Raised when start + duration runs past the end of the day."""

    def __init__(self, start_slot: int, duration: int):
        super().__init__(
            message="Event duration exceeds daily slot limit.",
            code="SLOT_RANGE_EXCEEDED",
            details={"start_slot": start_slot, "duration": duration},
        )


# Booking transaction


class OutsideAvailabilityException(BusinessRuleException):
    """Raised when the requested interval is not inside one open interval."""

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message or "Requested time is outside the instructor's availability",
            code="OUTSIDE_AVAILABILITY",
            details=details or {},
        )


class BookingConflictException(ConflictException):
    """Raised when a booking conflicts with existing bookings."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class InsufficientCreditsException(BusinessRuleException):
    """Raised when no unexpired pool of the duration class has credits left."""

    def __init__(self, user_id: str, duration_minutes: int):
        super().__init__(
            message=f"Insufficient credits for a {duration_minutes}-minute lesson",
            code="INSUFFICIENT_CREDITS",
            details={"user_id": user_id, "duration_minutes": duration_minutes},
        )


class PaymentMethodNotAllowedException(BusinessRuleException):
    """Raised when the student may not use the requested payment method."""

    def __init__(self, payment_method: str, user_id: str):
        super().__init__(
            message=f"Payment method '{payment_method}' is not available for this student",
            code="PAYMENT_METHOD_NOT_ALLOWED",
            details={"payment_method": payment_method, "user_id": user_id},
        )


# Refund path


class AlreadyRefundedException(ConflictException):
    """Raised when a booking already carries a refund."""

    def __init__(self, booking_id: str):
        super().__init__(
            message="Booking has already been refunded",
            code="ALREADY_REFUNDED",
            details={"booking_id": booking_id},
        )


class RefundMethodMismatchException(BusinessRuleException):
    """Raised when the requested refund method differs from how the booking was paid."""

    def __init__(self, requested: str, provenance: Optional[str]):
        super().__init__(
            message=(
                f"Cannot refund via {requested} - booking was "
                f"{'paid with ' + provenance if provenance else 'not prepaid'}"
            ),
            code="METHOD_MISMATCH",
            details={"requested": requested, "provenance": provenance},
        )


class PaymentGatewayException(ServiceException):
    """Raised when the external payment gateway rejects or fails a request."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="GATEWAY_FAILURE", details=details or {})


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
