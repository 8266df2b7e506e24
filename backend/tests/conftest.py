# backend/tests/conftest.py
"""
Pytest configuration for the booking engine.

Settings are pinned BEFORE any engine import: no local .env, no Redis and no
Stripe key leak into a test run. Every test gets its own file-backed SQLite
database so tests that need several concurrent sessions can open them against
the same data.
"""

import os

# CRITICAL: set before importing booking_engine (settings load at import time)
os.environ["CI"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ.pop("STRIPE_SECRET_KEY", None)

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterator, List, Optional, Tuple

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from booking_engine.core.exceptions import PaymentGatewayException
from booking_engine.database import build_engine, init_db
from booking_engine.models.availability import BlockedInterval, WeeklyAvailabilityEntry
from booking_engine.models.credit import CreditPool
from booking_engine.models.user import InstructorProfile, User
from booking_engine.services.booking_transaction_service import BookingTransactionService

# Fixed reference clock: Monday 2026-06-01 08:00 UTC
FIXED_NOW = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)
# The Monday a week later; bookings on it are 169+ hours out
LESSON_DAY = date(2026, 6, 8)
MONDAY = 1  # day_of_week: 0 = Sunday

# 09:00-17:00
WORKDAY_START_SLOT = 36
WORKDAY_DURATION = 32


class FakePaymentGateway:
    """Records charges and refunds; flip the fail flags to simulate outages."""

    def __init__(self) -> None:
        self.charges: List[Tuple[Decimal, str, str]] = []
        self.refunds: List[Tuple[str, Decimal, str]] = []
        self.fail_charge = False
        self.fail_refund = False

    def charge(self, amount: Decimal, customer_ref: str, *, idempotency_key: str) -> str:
        if self.fail_charge:
            raise PaymentGatewayException("Card declined")
        self.charges.append((amount, customer_ref, idempotency_key))
        return f"pi_{len(self.charges)}"

    def refund(self, charge_reference: str, amount: Decimal, *, idempotency_key: str) -> str:
        if self.fail_refund:
            raise PaymentGatewayException("Gateway unavailable")
        self.refunds.append((charge_reference, amount, idempotency_key))
        return f"re_{len(self.refunds)}"


class RecordingSink:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, dict]] = []

    def send(self, kind: str, recipient_id: str, payload: dict) -> None:
        self.sent.append((kind, recipient_id, payload))


@pytest.fixture
def engine(tmp_path) -> Iterator[Engine]:
    test_engine = build_engine(f"sqlite:///{tmp_path / 'booking_engine_test.db'}")
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# ============================================================================
# Data builders
# ============================================================================


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    counter = {"n": 0}

    def _make_user(**overrides) -> User:
        counter["n"] += 1
        user = User(
            email=overrides.pop("email", f"user{counter['n']}@example.com"),
            full_name=overrides.pop("full_name", f"Test User {counter['n']}"),
            **overrides,
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_instructor(db: Session, make_user) -> Callable[..., User]:
    """Instructor with a pricing profile and Monday 09:00-17:00 availability."""

    def _make_instructor(
        lesson_rate: Optional[Decimal] = Decimal("40.00"), with_workday: bool = True
    ) -> User:
        instructor = make_user(full_name="Test Instructor")
        db.add(InstructorProfile(user_id=instructor.id, lesson_rate=lesson_rate))
        if with_workday:
            db.add(
                WeeklyAvailabilityEntry(
                    instructor_id=instructor.id,
                    day_of_week=MONDAY,
                    start_slot=WORKDAY_START_SLOT,
                    duration=WORKDAY_DURATION,
                )
            )
        db.commit()
        return instructor

    return _make_instructor


@pytest.fixture
def add_weekly_entry(db: Session) -> Callable[..., WeeklyAvailabilityEntry]:
    def _add(instructor_id: str, day_of_week: int, start_slot: int, duration: int):
        entry = WeeklyAvailabilityEntry(
            instructor_id=instructor_id,
            day_of_week=day_of_week,
            start_slot=start_slot,
            duration=duration,
        )
        db.add(entry)
        db.commit()
        return entry

    return _add


@pytest.fixture
def add_block(db: Session) -> Callable[..., BlockedInterval]:
    def _add(instructor_id: str, start: datetime, end: datetime, reason: str = "Time off"):
        block = BlockedInterval(
            instructor_id=instructor_id, start_datetime=start, end_datetime=end, reason=reason
        )
        db.add(block)
        db.commit()
        return block

    return _add


@pytest.fixture
def grant_credits(db: Session) -> Callable[..., CreditPool]:
    def _grant(
        user_id: str, duration_minutes: int, amount: int, expires_on: Optional[date] = None
    ) -> CreditPool:
        pool = CreditPool(
            user_id=user_id,
            duration_minutes=duration_minutes,
            credits_remaining=amount,
            expires_on=expires_on,
        )
        db.add(pool)
        db.commit()
        return pool

    return _grant


@pytest.fixture
def make_booking_service(db: Session, gateway: FakePaymentGateway, clock):
    def _make(now: Optional[datetime] = None) -> BookingTransactionService:
        return BookingTransactionService(
            db,
            payment_gateway=gateway,
            clock=(lambda: now) if now is not None else clock,
        )

    return _make


@pytest.fixture
def booking_service(make_booking_service) -> BookingTransactionService:
    return make_booking_service()


def hours_before_lesson(hours: float, start_slot: int = WORKDAY_START_SLOT) -> datetime:
    """Clock value ``hours`` before a lesson starting at ``start_slot`` on LESSON_DAY."""
    lesson_start = datetime(
        LESSON_DAY.year,
        LESSON_DAY.month,
        LESSON_DAY.day,
        start_slot // 4,
        (start_slot % 4) * 15,
        tzinfo=timezone.utc,
    )
    return lesson_start - timedelta(hours=hours)
