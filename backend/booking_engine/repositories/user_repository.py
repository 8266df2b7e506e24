# backend/booking_engine/repositories/user_repository.py
"""
User Repository for the booking engine.

Handles user lookups, instructor profile access (including the per-instructor
row lock that serializes bookings) and the persisted last-observed credit
balance.
"""

import logging
from typing import Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.user import InstructorProfile, User
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[User]):
    """Repository for User and InstructorProfile data access."""

    def __init__(self, db: Session):
        """Initialize with User model."""
        super().__init__(db, User)
        self.logger = logging.getLogger(__name__)

    def get_instructor_profile(self, instructor_id: str) -> Optional[InstructorProfile]:
        """Get the pricing profile for an instructor user."""
        try:
            return cast(
                Optional[InstructorProfile],
                self.db.query(InstructorProfile)
                .filter(InstructorProfile.user_id == instructor_id)
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting instructor profile {instructor_id}: {str(e)}")
            raise RepositoryException(f"Failed to get instructor profile: {str(e)}")

    def lock_instructor_profile(self, instructor_id: str) -> Optional[InstructorProfile]:
        """
        Load an instructor profile with SELECT ... FOR UPDATE.

        Holding this lock until commit serializes conflict checking and booking
        insertion for the instructor. SQLite ignores FOR UPDATE, so there a
        no-op UPDATE on the row takes the database write lock instead.
        """
        try:
            if self.db.get_bind().dialect.name == "sqlite":
                self.db.query(InstructorProfile).filter(
                    InstructorProfile.user_id == instructor_id
                ).update(
                    {InstructorProfile.is_active: InstructorProfile.is_active},
                    synchronize_session=False,
                )
            return cast(
                Optional[InstructorProfile],
                self.db.query(InstructorProfile)
                .filter(InstructorProfile.user_id == instructor_id)
                .with_for_update()
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking instructor profile {instructor_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock instructor profile: {str(e)}") from e

    def set_last_known_credits(self, user_id: str, balance: int) -> None:
        try:
            self.db.query(User).filter(User.id == user_id).update(
                {User.last_known_credits: balance}, synchronize_session=False
            )
            user = self.db.get(User, user_id)
            if user is not None:
                self.db.expire(user, ["last_known_credits"])
        except SQLAlchemyError as e:
            self.logger.error(f"Error storing credit balance for {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to store credit balance: {str(e)}") from e
