# backend/booking_engine/repositories/credit_repository.py
"""
Credit Repository for the booking engine.

Encapsulates credit pool queries and the guarded balance mutations used by
the credit ledger. Decrements are conditional UPDATE statements so the
non-negative balance holds even when two units race on the same pool.
"""

from __future__ import annotations

from datetime import date
import logging
from typing import List, Optional, Tuple, cast

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.credit import CreditPool, CreditUsageRecord
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _unexpired(today: date):  # type: ignore[no-untyped-def]
    return or_(CreditPool.expires_on.is_(None), CreditPool.expires_on >= today)


class CreditRepository(BaseRepository[CreditPool]):
    """Repository for credit pools and credit usage records."""

    def __init__(self, db: Session):
        super().__init__(db, CreditPool)
        self.logger = logging.getLogger(__name__)

    def get_debit_candidates(
        self, *, user_id: str, duration_minutes: int, today: date
    ) -> List[CreditPool]:
        """Return unexpired pools of the class that still hold credits."""
        try:
            query = (
                self.db.query(CreditPool)
                .filter(
                    CreditPool.user_id == user_id,
                    CreditPool.duration_minutes == duration_minutes,
                    CreditPool.credits_remaining > 0,
                    _unexpired(today),
                )
                .order_by(CreditPool.created_at.asc(), CreditPool.id.asc())
            )
            return cast(List[CreditPool], query.all())
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get debit candidates: %s", str(exc))
            raise RepositoryException("Failed to get debit candidates") from exc

    def try_decrement(self, pool: CreditPool) -> bool:
        """
        Take one credit from ``pool`` if it still has one.

        Returns False when a concurrent unit emptied the pool first.
        """
        try:
            updated = (
                self.db.query(CreditPool)
                .filter(CreditPool.id == pool.id, CreditPool.credits_remaining > 0)
                .update(
                    {CreditPool.credits_remaining: CreditPool.credits_remaining - 1},
                    synchronize_session=False,
                )
            )
            self.db.expire(pool, ["credits_remaining"])
            return bool(updated)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to decrement credit pool %s: %s", pool.id, str(exc))
            raise RepositoryException("Failed to decrement credit pool") from exc

    def find_pool_for_credit(
        self, *, user_id: str, duration_minutes: int, expires_on: Optional[date]
    ) -> Optional[CreditPool]:
        """Find the pool of the same class and expiry cohort, if one exists."""
        try:
            query = self.db.query(CreditPool).filter(
                CreditPool.user_id == user_id,
                CreditPool.duration_minutes == duration_minutes,
            )
            if expires_on is None:
                query = query.filter(CreditPool.expires_on.is_(None))
            else:
                query = query.filter(CreditPool.expires_on == expires_on)
            return cast(
                Optional[CreditPool],
                query.order_by(CreditPool.created_at.asc(), CreditPool.id.asc()).first(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to find credit pool: %s", str(exc))
            raise RepositoryException("Failed to find credit pool") from exc

    def increment(self, pool: CreditPool, amount: int) -> None:
        try:
            self.db.query(CreditPool).filter(CreditPool.id == pool.id).update(
                {CreditPool.credits_remaining: CreditPool.credits_remaining + amount},
                synchronize_session=False,
            )
            self.db.expire(pool, ["credits_remaining"])
        except SQLAlchemyError as exc:
            self.logger.error("Failed to increment credit pool %s: %s", pool.id, str(exc))
            raise RepositoryException("Failed to increment credit pool") from exc

    def get_balance(
        self, *, user_id: str, duration_minutes: int, today: date
    ) -> Tuple[int, Optional[date]]:
        """
        Sum unexpired credits of one class.

        Returns:
            ``(total, next_expiry)`` where next_expiry is the earliest expiry
            among unexpired pools that still hold credits
        """
        try:
            total, next_expiry = (
                self.db.query(
                    func.coalesce(func.sum(CreditPool.credits_remaining), 0),
                    func.min(CreditPool.expires_on),
                )
                .filter(
                    CreditPool.user_id == user_id,
                    CreditPool.duration_minutes == duration_minutes,
                    CreditPool.credits_remaining > 0,
                    _unexpired(today),
                )
                .one()
            )
            return int(total or 0), next_expiry
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get credit balance: %s", str(exc))
            raise RepositoryException("Failed to get credit balance") from exc

    def get_total_balance(self, *, user_id: str, today: date) -> int:
        """Unexpired credits across every duration class."""
        try:
            total = (
                self.db.query(func.coalesce(func.sum(CreditPool.credits_remaining), 0))
                .filter(CreditPool.user_id == user_id, _unexpired(today))
                .scalar()
            )
            return int(total or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get total credit balance: %s", str(exc))
            raise RepositoryException("Failed to get total credit balance") from exc

    # Usage records

    def create_usage_record(
        self, *, user_id: str, booking_id: str, credit_pool_id: str, duration_minutes: int
    ) -> CreditUsageRecord:
        try:
            record = CreditUsageRecord(
                user_id=user_id,
                booking_id=booking_id,
                credit_pool_id=credit_pool_id,
                duration_minutes=duration_minutes,
            )
            self.db.add(record)
            self.db.flush()
            return record
        except SQLAlchemyError as exc:
            self.logger.error("Failed to record credit usage for %s: %s", booking_id, str(exc))
            raise RepositoryException("Failed to record credit usage") from exc

    def get_usage_for_booking(self, booking_id: str) -> Optional[CreditUsageRecord]:
        try:
            return cast(
                Optional[CreditUsageRecord],
                self.db.query(CreditUsageRecord)
                .filter(CreditUsageRecord.booking_id == booking_id)
                .first(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get credit usage for %s: %s", booking_id, str(exc))
            raise RepositoryException("Failed to get credit usage") from exc

    def count_usage(self, user_id: str) -> int:
        try:
            return int(
                self.db.query(func.count(CreditUsageRecord.id))
                .filter(CreditUsageRecord.user_id == user_id)
                .scalar()
                or 0
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to count credit usage for %s: %s", user_id, str(exc))
            raise RepositoryException("Failed to count credit usage") from exc
