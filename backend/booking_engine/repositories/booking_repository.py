# backend/booking_engine/repositories/booking_repository.py
"""
Booking Repository for the booking engine.

Bookings are created through the generic ``create`` so that an IntegrityError
from the partial unique index surfaces to the service, which reports it as a
slot conflict.
"""

from datetime import date
import logging
from typing import List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def get_for_update(self, booking_id: str) -> Optional[Booking]:
        """
        Load a booking with a row lock held until the unit ends.

        SQLite ignores FOR UPDATE, so there a no-op UPDATE on the row takes the
        database write lock first. The row is reloaded so a status committed by
        a competing unit is seen.
        """
        try:
            if self.db.get_bind().dialect.name == "sqlite":
                self.db.query(Booking).filter(Booking.id == booking_id).update(
                    {Booking.status: Booking.status}, synchronize_session=False
                )
            return cast(
                Optional[Booking],
                self.db.query(Booking)
                .filter(Booking.id == booking_id)
                .with_for_update()
                .populate_existing()
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock booking: {str(e)}") from e

    def _list_bookings(
        self,
        owner_column,
        owner_id: str,
        start_date: Optional[date],
        end_date: Optional[date],
        include_cancelled: bool,
    ) -> List[Booking]:
        query = self.db.query(Booking).filter(owner_column == owner_id)
        if start_date is not None:
            query = query.filter(Booking.booking_date >= start_date)
        if end_date is not None:
            query = query.filter(Booking.booking_date <= end_date)
        if not include_cancelled:
            query = query.filter(Booking.status != BookingStatus.CANCELLED.value)
        return cast(List[Booking], query.order_by(Booking.booking_date, Booking.start_slot).all())

    def get_instructor_bookings(
        self,
        instructor_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        include_cancelled: bool = False,
    ) -> List[Booking]:
        """
        Get an instructor's bookings, self-blocks included.

        Args:
            instructor_id: The instructor's user ID
            start_date: Optional first date (inclusive)
            end_date: Optional last date (inclusive)
            include_cancelled: Also return cancelled rows

        Returns:
            Bookings ordered by date then start slot
        """
        try:
            return self._list_bookings(
                Booking.instructor_id, instructor_id, start_date, end_date, include_cancelled
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting instructor bookings: {str(e)}")
            raise RepositoryException(f"Failed to get bookings: {str(e)}")

    def get_student_bookings(
        self,
        student_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        include_cancelled: bool = False,
    ) -> List[Booking]:
        """Get a student's bookings; same filters and ordering as the instructor listing."""
        try:
            return self._list_bookings(
                Booking.student_id, student_id, start_date, end_date, include_cancelled
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting student bookings: {str(e)}")
            raise RepositoryException(f"Failed to get bookings: {str(e)}")
