# backend/booking_engine/repositories/availability_repository.py
"""
Availability Repository for the booking engine.

Reads and writes the weekly availability template and the blocked intervals
that cut holes into a specific occurrence. Writes flush but never commit.
"""

from datetime import datetime
import logging
from typing import Iterable, List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import BlockedInterval, WeeklyAvailabilityEntry
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[WeeklyAvailabilityEntry]):
    """Repository for weekly availability and blocked time data access."""

    def __init__(self, db: Session):
        super().__init__(db, WeeklyAvailabilityEntry)
        self.logger = logging.getLogger(__name__)

    def get_weekly_entries(
        self, instructor_id: str, day_of_week: int
    ) -> List[WeeklyAvailabilityEntry]:
        """
        Get the recurring entries for one weekday.

        Args:
            instructor_id: The instructor ID
            day_of_week: 0 = Sunday ... 6 = Saturday

        Returns:
            Entries ordered by start slot
        """
        try:
            return cast(
                List[WeeklyAvailabilityEntry],
                self.db.query(WeeklyAvailabilityEntry)
                .filter(
                    WeeklyAvailabilityEntry.instructor_id == instructor_id,
                    WeeklyAvailabilityEntry.day_of_week == day_of_week,
                )
                .order_by(WeeklyAvailabilityEntry.start_slot)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting weekly availability: {str(e)}")
            raise RepositoryException(f"Failed to get weekly availability: {str(e)}")

    def get_blocked_intervals_overlapping(
        self, instructor_id: str, window_start: datetime, window_end: datetime
    ) -> List[BlockedInterval]:
        """Get blocked intervals that intersect ``[window_start, window_end)``."""
        try:
            return cast(
                List[BlockedInterval],
                self.db.query(BlockedInterval)
                .filter(
                    BlockedInterval.instructor_id == instructor_id,
                    BlockedInterval.start_datetime < window_end,
                    BlockedInterval.end_datetime > window_start,
                )
                .order_by(BlockedInterval.start_datetime)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting blocked intervals: {str(e)}")
            raise RepositoryException(f"Failed to get blocked intervals: {str(e)}")

    def get_weekly_template(self, instructor_id: str) -> List[WeeklyAvailabilityEntry]:
        """Get every recurring entry, ordered by weekday then start slot."""
        try:
            return cast(
                List[WeeklyAvailabilityEntry],
                self.db.query(WeeklyAvailabilityEntry)
                .filter(WeeklyAvailabilityEntry.instructor_id == instructor_id)
                .order_by(WeeklyAvailabilityEntry.day_of_week, WeeklyAvailabilityEntry.start_slot)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting weekly template: {str(e)}")
            raise RepositoryException(f"Failed to get weekly template: {str(e)}")

    def delete_weekly_entries(self, instructor_id: str, days: Iterable[int]) -> int:
        """
        Delete the recurring entries of the given weekdays.

        Returns:
            Number of rows removed
        """
        try:
            deleted = (
                self.db.query(WeeklyAvailabilityEntry)
                .filter(
                    WeeklyAvailabilityEntry.instructor_id == instructor_id,
                    WeeklyAvailabilityEntry.day_of_week.in_(list(days)),
                )
                .delete(synchronize_session=False)
            )
            self.db.flush()
            return int(deleted)
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting weekly entries: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to delete weekly entries: {str(e)}") from e

    def create_weekly_entry(
        self, instructor_id: str, day_of_week: int, start_slot: int, duration: int
    ) -> WeeklyAvailabilityEntry:
        return self.create(
            instructor_id=instructor_id,
            day_of_week=day_of_week,
            start_slot=start_slot,
            duration=duration,
        )

    def create_blocked_interval(
        self,
        instructor_id: str,
        start_datetime: datetime,
        end_datetime: datetime,
        reason: Optional[str] = None,
    ) -> BlockedInterval:
        try:
            block = BlockedInterval(
                instructor_id=instructor_id,
                start_datetime=start_datetime,
                end_datetime=end_datetime,
                reason=reason,
            )
            self.db.add(block)
            self.db.flush()
            return block
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating blocked interval: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create blocked interval: {str(e)}") from e

    def get_blocked_interval(self, block_id: str) -> Optional[BlockedInterval]:
        try:
            return cast(
                Optional[BlockedInterval],
                self.db.query(BlockedInterval).filter(BlockedInterval.id == block_id).first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting blocked interval {block_id}: {str(e)}")
            raise RepositoryException(f"Failed to get blocked interval: {str(e)}")

    def delete_blocked_interval(self, block: BlockedInterval) -> None:
        try:
            self.db.delete(block)
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting blocked interval: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to delete blocked interval: {str(e)}") from e
