# backend/booking_engine/models/refund.py
"""Refund model: at most one refund per booking."""

from enum import Enum
import logging

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class RefundMethod(str, Enum):
    CREDIT = "credit"
    GATEWAY = "gateway"


class Refund(Base):
    """Reversal of a booking's financial effect."""

    __tablename__ = "refunds"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, unique=True)
    original_transaction_id = Column(String(26), ForeignKey("transactions.id"), nullable=True)
    refund_reference = Column(String(255), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(String(10), nullable=False)
    refunded_by = Column(String(26), ForeignKey("users.id"), nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("method IN ('credit', 'gateway')", name="ck_refunds_method"),
        CheckConstraint("amount >= 0", name="check_refund_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Refund {self.id}: booking={self.booking_id} {self.method} {self.amount}>"
