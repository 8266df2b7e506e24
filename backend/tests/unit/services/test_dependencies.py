from __future__ import annotations

from unittest.mock import Mock

from sqlalchemy.orm import Session

from booking_engine.services import dependencies
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.services.booking_transaction_service import BookingTransactionService
from booking_engine.services.refund_service import RefundService


def test_services_share_the_injected_gateway() -> None:
    db = Mock(spec=Session)
    gateway = Mock()

    booking_service = dependencies.get_booking_transaction_service(db=db, payment_gateway=gateway)
    refund_service = dependencies.get_refund_service(db=db, payment_gateway=gateway)

    assert isinstance(booking_service, BookingTransactionService)
    assert isinstance(refund_service, RefundService)
    assert booking_service.db is db
    assert refund_service.db is db


def test_payment_gateway_is_cached() -> None:
    dependencies.get_payment_gateway.cache_clear()
    try:
        assert dependencies.get_payment_gateway() is dependencies.get_payment_gateway()
    finally:
        dependencies.get_payment_gateway.cache_clear()


def test_availability_service_uses_the_request_session() -> None:
    db = Mock(spec=Session)

    service = dependencies.get_availability_service(db=db)

    assert isinstance(service, AvailabilityService)
    assert service.db is db
    assert service.repository.db is db
