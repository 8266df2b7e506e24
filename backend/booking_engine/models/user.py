# backend/booking_engine/models/user.py
"""
User and instructor profile models.

Only the fields the booking engine reads or writes are modeled here:
authentication, profiles and roles live with the surrounding platform.

Classes:
    InPersonPaymentOverride: Per-user switch that wins over the global setting
    User: Students and instructors
    InstructorProfile: Instructor-specific pricing and activity flag
"""

from enum import Enum
import logging

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class InPersonPaymentOverride(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"


class User(Base):
    """
    Platform user (student or instructor).

    Attributes:
        id: ULID primary key
        email: Unique email address
        full_name: Display name used in notifications
        payment_customer_ref: Gateway customer holding the card on file
        in_person_payment_override: 'enabled', 'disabled' or NULL (use global setting)
        last_known_credits: Last observed credit balance; drives threshold notifications
    """

    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String(100), nullable=False)
    payment_customer_ref = Column(String(255), nullable=True)
    in_person_payment_override = Column(String(10), nullable=True)
    last_known_credits = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    instructor_profile = relationship("InstructorProfile", back_populates="user", uselist=False)

    __table_args__ = (
        CheckConstraint(
            "in_person_payment_override IS NULL "
            "OR in_person_payment_override IN ('enabled', 'disabled')",
            name="ck_users_in_person_override",
        ),
    )

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email}>"


class InstructorProfile(Base):
    """
    Instructor pricing profile.

    ``lesson_rate`` is the price of one base-duration lesson; NULL means the
    configured fallback rate applies. The booking transaction takes a row lock
    on this profile to serialize bookings per instructor.
    """

    __tablename__ = "instructor_profiles"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False, unique=True)
    lesson_rate = Column(Numeric(10, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="instructor_profile")

    __table_args__ = (
        CheckConstraint("lesson_rate IS NULL OR lesson_rate > 0", name="check_rate_positive"),
    )

    def __repr__(self) -> str:
        return f"<InstructorProfile {self.user_id} rate={self.lesson_rate}>"
