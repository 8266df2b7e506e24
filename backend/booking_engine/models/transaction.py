# backend/booking_engine/models/transaction.py
"""Financial transaction model."""

from enum import Enum
import logging

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class PaymentMethod(str, Enum):
    CREDITS = "credits"
    IN_PERSON = "in-person"
    GATEWAY = "gateway"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    OUTSTANDING = "outstanding"  # In-person payment not yet collected
    PENDING = "pending"  # Gateway charge still settling
    FAILED = "failed"
    CANCELLED = "cancelled"  # Outstanding charge voided by a cancellation


class Transaction(Base):
    """Money owed or paid for a booking."""

    __tablename__ = "transactions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=TransactionStatus.COMPLETED.value)
    external_reference = Column(String(255), nullable=True, comment="Gateway charge reference")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "payment_method IN ('credits', 'in-person', 'gateway')",
            name="ck_transactions_payment_method",
        ),
        CheckConstraint(
            "status IN ('completed', 'outstanding', 'pending', 'failed', 'cancelled')",
            name="ck_transactions_status",
        ),
        CheckConstraint("amount >= 0", name="check_amount_non_negative"),
        Index("idx_transactions_booking", "booking_id"),
        Index("idx_transactions_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction {self.id}: {self.payment_method} {self.amount} "
            f"status={self.status} booking={self.booking_id}>"
        )
