# backend/booking_engine/repositories/refund_repository.py
"""Refund Repository: at most one row per booking (unique index on booking_id)."""

import logging
from typing import Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.refund import Refund
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class RefundRepository(BaseRepository[Refund]):
    def __init__(self, db: Session):
        super().__init__(db, Refund)
        self.logger = logging.getLogger(__name__)

    def get_by_booking_id(self, booking_id: str) -> Optional[Refund]:
        try:
            return cast(
                Optional[Refund],
                self.db.query(Refund).filter(Refund.booking_id == booking_id).first(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to get refund for %s: %s", booking_id, str(exc))
            raise RepositoryException("Failed to get refund") from exc
