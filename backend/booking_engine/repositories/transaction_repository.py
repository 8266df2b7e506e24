# backend/booking_engine/repositories/transaction_repository.py
"""Transaction Repository: financial records linked to bookings."""

import logging
from typing import List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.transaction import PaymentMethod, Transaction, TransactionStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

REFUNDABLE_GATEWAY_STATUSES = (
    TransactionStatus.COMPLETED.value,
    TransactionStatus.PENDING.value,
)


class TransactionRepository(BaseRepository[Transaction]):
    """Repository for transaction queries."""

    def __init__(self, db: Session):
        super().__init__(db, Transaction)
        self.logger = logging.getLogger(__name__)

    def get_for_booking(self, booking_id: str) -> List[Transaction]:
        try:
            return cast(
                List[Transaction],
                self.db.query(Transaction)
                .filter(Transaction.booking_id == booking_id)
                .order_by(Transaction.created_at.asc(), Transaction.id.asc())
                .all(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get transactions for %s: %s", booking_id, str(exc))
            raise RepositoryException("Failed to get booking transactions") from exc

    def get_gateway_charge(self, booking_id: str) -> Optional[Transaction]:
        """Return the settled or settling gateway charge that paid for a booking."""
        try:
            return cast(
                Optional[Transaction],
                self.db.query(Transaction)
                .filter(
                    Transaction.booking_id == booking_id,
                    Transaction.payment_method == PaymentMethod.GATEWAY.value,
                    Transaction.status.in_(REFUNDABLE_GATEWAY_STATUSES),
                )
                .order_by(Transaction.created_at.desc(), Transaction.id.desc())
                .first(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get gateway charge for %s: %s", booking_id, str(exc))
            raise RepositoryException("Failed to get gateway charge") from exc

    def cancel_outstanding_for_booking(self, booking_id: str) -> int:
        """Void outstanding in-person charges of a booking; returns rows changed."""
        try:
            return int(
                self.db.query(Transaction)
                .filter(
                    Transaction.booking_id == booking_id,
                    Transaction.payment_method == PaymentMethod.IN_PERSON.value,
                    Transaction.status == TransactionStatus.OUTSTANDING.value,
                )
                .update(
                    {Transaction.status: TransactionStatus.CANCELLED.value},
                    synchronize_session="evaluate",
                )
            )
        except SQLAlchemyError as exc:
            self.logger.error(
                "Failed to cancel outstanding transactions for %s: %s", booking_id, str(exc)
            )
            raise RepositoryException("Failed to cancel outstanding transactions") from exc
