# backend/booking_engine/services/credit_ledger.py
"""
Credit Ledger for the booking engine.

Per-user credit balances partitioned by duration class (lesson length in
minutes), held in pools with optional expiry dates.

Every mutating method takes ``use_transaction``: True commits its own unit,
False joins the caller's unit (the booking and refund services use this so the
ledger change commits or rolls back together with the booking).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import MAX_DURATION_CLASS, MIN_DURATION_CLASS, SLOT_MINUTES
from ..core.exceptions import InsufficientCreditsException, ValidationException
from ..models.credit import CreditPool, CreditUsageRecord
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..repositories.credit_repository import CreditRepository
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditBalance:
    total: int
    next_expiry: Optional[date] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_duration_class(duration_minutes: object) -> int:
    """Duration classes are multiples of 15 minutes between 15 and 180."""
    if (
        not isinstance(duration_minutes, int)
        or isinstance(duration_minutes, bool)
        or not MIN_DURATION_CLASS <= duration_minutes <= MAX_DURATION_CLASS
        or duration_minutes % SLOT_MINUTES != 0
    ):
        raise ValidationException(
            "Invalid duration. Must be a multiple of 15 minutes between 15 and 180.",
            code="INVALID_DURATION_CLASS",
            details={"duration_minutes": duration_minutes},
        )
    return duration_minutes


class CreditLedger(BaseService):
    """Service owning credit pool balances and debits."""

    def __init__(
        self,
        db: Session,
        credit_repository: Optional[CreditRepository] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(db)
        self.credit_repository = credit_repository or RepositoryFactory.create_credit_repository(
            db
        )
        self._clock = clock or _utcnow

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    @BaseService.measure_operation("credit_get_balance")
    def get_balance(self, user_id: str, duration_minutes: int) -> CreditBalance:
        """Sum credits over unexpired pools of one duration class."""
        validate_duration_class(duration_minutes)
        total, next_expiry = self.credit_repository.get_balance(
            user_id=user_id, duration_minutes=duration_minutes, today=self._today()
        )
        return CreditBalance(total=total, next_expiry=next_expiry)

    def get_credit_balance(self, user_id: str, duration_minutes: int) -> CreditBalance:
        return self.get_balance(user_id, duration_minutes)

    def has_sufficient(self, user_id: str, duration_minutes: int) -> bool:
        return self.get_balance(user_id, duration_minutes).total > 0

    def get_total_balance(self, user_id: str) -> int:
        """Unexpired credits across every duration class."""
        return self.credit_repository.get_total_balance(user_id=user_id, today=self._today())

    def count_usage(self, user_id: str) -> int:
        """Number of lessons paid with credits."""
        return self.credit_repository.count_usage(user_id)

    @BaseService.measure_operation("credit_debit")
    def debit(
        self,
        user_id: str,
        duration_minutes: int,
        booking_id: str,
        *,
        use_transaction: bool = True,
    ) -> CreditUsageRecord:
        """
        Take one credit of ``duration_minutes`` for ``booking_id``.

        The balance check and the decrement are the same conditional UPDATE,
        so two concurrent debits can never both take the last credit.

        Raises:
            InsufficientCreditsException: No eligible pool had a credit left
        """
        validate_duration_class(duration_minutes)

        def _debit() -> CreditUsageRecord:
            candidates = self.credit_repository.get_debit_candidates(
                user_id=user_id, duration_minutes=duration_minutes, today=self._today()
            )
            for pool in candidates:
                if self.credit_repository.try_decrement(pool):
                    record = self.credit_repository.create_usage_record(
                        user_id=user_id,
                        booking_id=booking_id,
                        credit_pool_id=pool.id,
                        duration_minutes=duration_minutes,
                    )
                    prometheus_metrics.record_credit_debit("success")
                    self.logger.info(
                        "Debited credit",
                        extra={
                            "user_id": user_id,
                            "booking_id": booking_id,
                            "pool_id": pool.id,
                            "duration_minutes": duration_minutes,
                        },
                    )
                    return record
                self.logger.debug(
                    "Credit pool drained concurrently, trying next",
                    extra={"pool_id": pool.id},
                )

            prometheus_metrics.record_credit_debit("insufficient")
            raise InsufficientCreditsException(user_id, duration_minutes)

        if use_transaction:
            with self.transaction():
                return _debit()
        return _debit()

    @BaseService.measure_operation("credit_grant")
    def credit(
        self,
        user_id: str,
        duration_minutes: int,
        amount: int,
        expires_on: Optional[date] = None,
        *,
        use_transaction: bool = True,
    ) -> CreditPool:
        """
        Add ``amount`` credits to the pool of the matching class and expiry cohort.

        A new pool is created when no pool of that cohort exists. Used for
        purchases and for refund restoration.
        """
        validate_duration_class(duration_minutes)
        if (
            not isinstance(amount, int)
            or isinstance(amount, bool)
            or not 1 <= amount <= settings.max_credit_grant
        ):
            raise ValidationException(
                f"Invalid amount. Must be a positive integer no greater than "
                f"{settings.max_credit_grant}.",
                code="INVALID_CREDIT_AMOUNT",
                details={"amount": amount},
            )
        if expires_on is not None and expires_on < self._today():
            raise ValidationException(
                "Expiry date cannot be in the past.",
                code="INVALID_EXPIRY",
                details={"expires_on": expires_on.isoformat()},
            )

        def _credit() -> CreditPool:
            pool = self.credit_repository.find_pool_for_credit(
                user_id=user_id, duration_minutes=duration_minutes, expires_on=expires_on
            )
            if pool is None:
                pool = self.credit_repository.create(
                    user_id=user_id,
                    duration_minutes=duration_minutes,
                    credits_remaining=amount,
                    expires_on=expires_on,
                )
            else:
                self.credit_repository.increment(pool, amount)

            self.log_operation(
                "credit_grant",
                user_id=user_id,
                duration_minutes=duration_minutes,
                amount=amount,
                pool_id=pool.id,
            )
            return pool

        if use_transaction:
            with self.transaction():
                return _credit()
        return _credit()
