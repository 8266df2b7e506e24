"""Lesson pricing and in-person payment eligibility."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import NotFoundException, PaymentMethodNotAllowedException
from ..core.slots import duration_minutes as slots_to_minutes
from ..models.transaction import PaymentMethod
from ..models.user import InPersonPaymentOverride, User
from ..repositories import RepositoryFactory
from ..repositories.user_repository import UserRepository
from .base import BaseService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def price_for_duration(rate: Decimal, duration_minutes: int) -> Decimal:
    """
    Price a lesson from a per-lesson rate.

    The rate covers one base-duration lesson; longer lessons scale linearly
    (double length costs double). Shorter lessons still cost one base lesson.
    """
    base = Decimal(settings.base_lesson_duration_minutes)
    multiplier = max(Decimal(1), Decimal(duration_minutes) / base)
    return quantize_money(Decimal(rate) * multiplier)


def in_person_allowed(user: User) -> bool:
    """Per-user override wins; otherwise the global setting decides."""
    override = user.in_person_payment_override
    if override == InPersonPaymentOverride.ENABLED.value:
        return True
    if override == InPersonPaymentOverride.DISABLED.value:
        return False
    return bool(settings.in_person_payment_enabled)


class PricingService(BaseService):
    """Compute lesson prices for in-person and gateway bookings."""

    def __init__(self, db: Session, user_repository: Optional[UserRepository] = None) -> None:
        super().__init__(db)
        self.user_repository = user_repository or RepositoryFactory.create_user_repository(db)

    def get_lesson_rate(self, instructor_id: str) -> Decimal:
        """Instructor's configured rate, or the fallback rate when unset."""
        profile = self.user_repository.get_instructor_profile(instructor_id)
        if profile is not None and profile.lesson_rate is not None:
            return Decimal(str(profile.lesson_rate))
        self.logger.debug(
            "Using fallback lesson rate",
            extra={"instructor_id": instructor_id, "rate": str(settings.in_person_fallback_rate)},
        )
        return Decimal(settings.in_person_fallback_rate)

    @BaseService.measure_operation("pricing.compute_lesson_price")
    def compute_lesson_price(self, instructor_id: str, duration: int) -> Decimal:
        """Price of a lesson of ``duration`` slots with this instructor."""
        return price_for_duration(self.get_lesson_rate(instructor_id), slots_to_minutes(duration))

    def ensure_in_person_allowed(self, student_id: str) -> User:
        """
        Raises:
            NotFoundException: Unknown student
            PaymentMethodNotAllowedException: Student may not pay in person
        """
        student = self.user_repository.get_by_id(student_id)
        if student is None:
            raise NotFoundException(f"Student {student_id} not found", code="STUDENT_NOT_FOUND")
        if not in_person_allowed(student):
            raise PaymentMethodNotAllowedException(PaymentMethod.IN_PERSON.value, student_id)
        return student
