# backend/booking_engine/models/credit.py
"""
Credit ledger models.

Credits are partitioned by duration class (lesson length in minutes). A user
may hold several pools of one class with different expiry cohorts; unexpired
pools of the same class are interchangeable.
"""

from datetime import date
import logging

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)

class CreditPool(Base):
    """Credits remaining for one (user, duration class, expiry cohort)."""

    __tablename__ = "credit_pools"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    credits_remaining = Column(Integer, nullable=False, default=0)
    expires_on = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("credits_remaining >= 0", name="check_credits_non_negative"),
        CheckConstraint("duration_minutes > 0", name="check_credit_duration_positive"),
        Index("idx_credit_pools_user_duration", "user_id", "duration_minutes"),
    )

    def is_unexpired(self, today: date) -> bool:
        return self.expires_on is None or self.expires_on >= today

    def __repr__(self) -> str:
        return (
            f"<CreditPool {self.id}: user={self.user_id} {self.duration_minutes}min "
            f"remaining={self.credits_remaining} expires={self.expires_on}>"
        )

class CreditUsageRecord(Base):
    """Immutable link from a booking to the pool that paid for it."""

    __tablename__ = "credit_usage"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, unique=True)
    credit_pool_id = Column(String(26), ForeignKey("credit_pools.id"), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<CreditUsageRecord booking={self.booking_id} pool={self.credit_pool_id}>"
