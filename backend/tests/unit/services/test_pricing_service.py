from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from sqlalchemy.orm import Session

from booking_engine.core.config import settings
from booking_engine.core.exceptions import NotFoundException, PaymentMethodNotAllowedException
from booking_engine.services.pricing_service import (
    PricingService,
    in_person_allowed,
    price_for_duration,
    quantize_money,
    to_cents,
)


@pytest.mark.parametrize(
    "rate, minutes, price",
    [
        ("40.00", 30, "40.00"),
        ("40.00", 60, "80.00"),
        ("40.00", 45, "60.00"),
        ("40.00", 15, "40.00"),
        ("33.33", 90, "99.99"),
    ],
)
def test_price_for_duration(rate: str, minutes: int, price: str) -> None:
    assert price_for_duration(Decimal(rate), minutes) == Decimal(price)


def test_money_helpers() -> None:
    assert quantize_money(Decimal("10.005")) == Decimal("10.01")
    assert to_cents(Decimal("80.00")) == 8000
    assert to_cents(Decimal("12.345")) == 1235


class TestInPersonEligibility:
    def test_override_wins(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "in_person_payment_enabled", False)
        assert in_person_allowed(SimpleNamespace(in_person_payment_override="enabled"))

        monkeypatch.setattr(settings, "in_person_payment_enabled", True)
        assert not in_person_allowed(SimpleNamespace(in_person_payment_override="disabled"))

    @pytest.mark.parametrize("enabled", [True, False])
    def test_global_setting_without_override(self, monkeypatch, enabled: bool) -> None:
        monkeypatch.setattr(settings, "in_person_payment_enabled", enabled)

        assert in_person_allowed(SimpleNamespace(in_person_payment_override=None)) is enabled


class TestPricingService:
    @pytest.fixture
    def users(self) -> Mock:
        return Mock()

    @pytest.fixture
    def service(self, users: Mock) -> PricingService:
        return PricingService(Mock(spec=Session), user_repository=users)

    def test_uses_instructor_rate(self, service: PricingService, users: Mock) -> None:
        users.get_instructor_profile.return_value = SimpleNamespace(lesson_rate=Decimal("45.00"))

        assert service.compute_lesson_price("inst", 4) == Decimal("90.00")

    def test_falls_back_without_profile(self, service: PricingService, users: Mock) -> None:
        users.get_instructor_profile.return_value = None

        assert service.get_lesson_rate("inst") == settings.in_person_fallback_rate

    def test_ensure_in_person_allowed(self, service: PricingService, users: Mock) -> None:
        users.get_by_id.return_value = None
        with pytest.raises(NotFoundException):
            service.ensure_in_person_allowed("ghost")

        users.get_by_id.return_value = SimpleNamespace(in_person_payment_override="disabled")
        with pytest.raises(PaymentMethodNotAllowedException):
            service.ensure_in_person_allowed("student")
