from __future__ import annotations

from datetime import date
from typing import List, Tuple
from unittest.mock import Mock

from hypothesis import given, strategies as st
import pytest
from sqlalchemy.orm import Session

from booking_engine.core.slots import SlotInterval
from booking_engine.models.booking import Booking, BookingStatus
from booking_engine.services.conflict_checker import ConflictChecker, find_conflicts, has_conflict


def _booking(start: int, duration: int, status: str = BookingStatus.BOOKED.value, id: str = "b") -> Booking:
    return Booking(id=id, start_slot=start, duration=duration, status=status)


intervals = st.integers(min_value=0, max_value=95).flatmap(
    lambda start: st.tuples(st.just(start), st.integers(min_value=1, max_value=96 - start))
)


@given(proposed=intervals, existing=st.lists(intervals, max_size=12))
def test_flags_exactly_the_overlapping_bookings(
    proposed: Tuple[int, int], existing: List[Tuple[int, int]]
) -> None:
    bookings = [
        _booking(start, duration, id=f"b{index}")
        for index, (start, duration) in enumerate(existing)
    ]
    proposed_slots = set(range(proposed[0], proposed[0] + proposed[1]))

    flagged = {booking.id for booking in find_conflicts(SlotInterval.from_duration(*proposed), bookings)}

    expected = {
        booking.id
        for booking in bookings
        if proposed_slots & set(range(booking.start_slot, booking.start_slot + booking.duration))
    }
    assert flagged == expected


def test_touching_bookings_do_not_conflict() -> None:
    bookings = [_booking(32, 4, id="before"), _booking(40, 4, id="after")]

    assert not has_conflict(SlotInterval(36, 40), bookings)


def test_cancelled_bookings_are_ignored() -> None:
    bookings = [_booking(36, 4, status=BookingStatus.CANCELLED.value)]

    assert find_conflicts(SlotInterval(36, 40), bookings) == []


def test_self_blocks_conflict_like_lessons() -> None:
    bookings = [_booking(36, 4, status=BookingStatus.BLOCKED.value, id="block")]

    assert [booking.id for booking in find_conflicts(SlotInterval(38, 42), bookings)] == ["block"]


class TestConflictChecker:
    @pytest.fixture
    def repository(self) -> Mock:
        return Mock()

    @pytest.fixture
    def checker(self, repository: Mock) -> ConflictChecker:
        return ConflictChecker(Mock(spec=Session), repository=repository)

    def test_passes_exclusion_to_repository(self, checker: ConflictChecker, repository: Mock) -> None:
        repository.get_bookings_for_conflict_check.return_value = [_booking(36, 4, id="x")]

        conflicts = checker.check_booking_conflicts(
            "inst", date(2026, 6, 8), SlotInterval(38, 40), exclude_booking_id="mine"
        )

        assert [booking.id for booking in conflicts] == ["x"]
        repository.get_bookings_for_conflict_check.assert_called_once_with(
            "inst", date(2026, 6, 8), "mine"
        )

    def test_check_time_conflicts(self, checker: ConflictChecker, repository: Mock) -> None:
        repository.get_bookings_for_conflict_check.return_value = [_booking(36, 4)]

        assert checker.check_time_conflicts("inst", date(2026, 6, 8), SlotInterval(38, 40))
        assert not checker.check_time_conflicts("inst", date(2026, 6, 8), SlotInterval(40, 44))
