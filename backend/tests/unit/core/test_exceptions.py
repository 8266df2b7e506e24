from __future__ import annotations

from fastapi import HTTPException
import pytest

from booking_engine.core.exceptions import (
    AlreadyRefundedException,
    BookingConflictException,
    BusinessRuleException,
    ConflictException,
    DomainException,
    InsufficientCreditsException,
    InvalidSlotException,
    NotFoundException,
    OutsideAvailabilityException,
    PaymentGatewayException,
    RefundMethodMismatchException,
    ServiceException,
    SlotRangeExceededException,
    ValidationException,
)


@pytest.mark.parametrize(
    "exc, status_code, code",
    [
        (InvalidSlotException(99), 400, "INVALID_SLOT"),
        (SlotRangeExceededException(94, 4), 400, "SLOT_RANGE_EXCEEDED"),
        (NotFoundException("Booking missing", code="BOOKING_NOT_FOUND"), 404, "BOOKING_NOT_FOUND"),
        (BookingConflictException(), 409, "BOOKING_CONFLICT"),
        (AlreadyRefundedException("b1"), 409, "ALREADY_REFUNDED"),
        (OutsideAvailabilityException(), 422, "OUTSIDE_AVAILABILITY"),
        (InsufficientCreditsException("u1", 30), 422, "INSUFFICIENT_CREDITS"),
        (RefundMethodMismatchException("gateway", "credit"), 422, "METHOD_MISMATCH"),
        (PaymentGatewayException("declined"), 502, "GATEWAY_FAILURE"),
    ],
)
def test_status_codes_and_codes(exc: DomainException, status_code: int, code: str) -> None:
    http_exc = exc.to_http_exception()

    assert isinstance(http_exc, HTTPException)
    assert http_exc.status_code == status_code
    assert http_exc.detail["code"] == code
    assert http_exc.detail["message"] == exc.message


def test_hierarchy() -> None:
    assert issubclass(InvalidSlotException, ValidationException)
    assert issubclass(BookingConflictException, ConflictException)
    assert issubclass(AlreadyRefundedException, ConflictException)
    assert issubclass(InsufficientCreditsException, BusinessRuleException)
    assert issubclass(PaymentGatewayException, ServiceException)


def test_default_code_is_class_name() -> None:
    assert ValidationException("bad").code == "ValidationException"


def test_method_mismatch_message_names_provenance() -> None:
    assert "paid with credit" in RefundMethodMismatchException("gateway", "credit").message
    assert "not prepaid" in RefundMethodMismatchException("credit", None).message


def test_details_survive_into_http_detail() -> None:
    exc = InsufficientCreditsException("u1", 60)

    assert exc.to_http_exception().detail["details"] == {"user_id": "u1", "duration_minutes": 60}
