from __future__ import annotations

from datetime import datetime, timedelta, timezone

from conftest import LESSON_DAY, MONDAY
import pytest

from booking_engine.core.exceptions import (
    NotFoundException,
    RepositoryException,
    SlotRangeExceededException,
    ValidationException,
)
from booking_engine.core.slots import SlotInterval
from booking_engine.models.availability import BlockedInterval
from booking_engine.models.booking import BookingStatus
from booking_engine.services.availability_resolver import AvailabilityResolver
from booking_engine.services.availability_service import AvailabilityService, WeeklySlot

TUESDAY = MONDAY + 1
WEDNESDAY = MONDAY + 2


def _utc(hour: int, minute: int = 0) -> datetime:
    return datetime(
        LESSON_DAY.year, LESSON_DAY.month, LESSON_DAY.day, hour, minute, tzinfo=timezone.utc
    )


def _template(service: AvailabilityService, instructor_id: str) -> list:
    return [
        (entry.day_of_week, entry.start_slot, entry.duration)
        for entry in service.get_weekly_availability(instructor_id)
    ]


@pytest.fixture
def service(db) -> AvailabilityService:
    return AvailabilityService(db)


@pytest.fixture
def instructor(make_instructor):
    return make_instructor()


class TestSetWeeklyAvailability:
    def test_replaces_the_whole_week_by_default(self, db, service, instructor) -> None:
        result = service.set_weekly_availability(
            instructor.id,
            [WeeklySlot(TUESDAY, 48, 8), WeeklySlot(TUESDAY, 36, 8)],
        )

        assert [(e.day_of_week, e.start_slot, e.duration) for e in result] == [
            (TUESDAY, 36, 8),
            (TUESDAY, 48, 8),
        ]
        resolver = AvailabilityResolver(db)
        assert resolver.get_instructor_availability(instructor.id, LESSON_DAY) == []
        assert resolver.get_instructor_availability(
            instructor.id, LESSON_DAY + timedelta(days=1)
        ) == [SlotInterval(36, 44), SlotInterval(48, 56)]

    def test_named_days_leave_other_days_alone(
        self, service, instructor, add_weekly_entry
    ) -> None:
        add_weekly_entry(instructor.id, WEDNESDAY, 40, 4)

        service.set_weekly_availability(
            instructor.id, [WeeklySlot(MONDAY, 60, 4)], days=[MONDAY]
        )

        assert _template(service, instructor.id) == [(MONDAY, 60, 4), (WEDNESDAY, 40, 4)]

    def test_empty_entries_clear_the_named_day(self, service, instructor, add_weekly_entry) -> None:
        add_weekly_entry(instructor.id, WEDNESDAY, 40, 4)

        service.set_weekly_availability(instructor.id, [], days=[MONDAY])

        assert _template(service, instructor.id) == [(WEDNESDAY, 40, 4)]

    def test_touching_entries_stay_separate(self, db, service, instructor) -> None:
        service.set_weekly_availability(
            instructor.id, [WeeklySlot(MONDAY, 36, 4), WeeklySlot(MONDAY, 40, 4)]
        )

        assert AvailabilityResolver(db).get_instructor_availability(
            instructor.id, LESSON_DAY
        ) == [SlotInterval(36, 40), SlotInterval(40, 44)]

    @pytest.mark.parametrize(
        "entries, days, code",
        [
            (
                [WeeklySlot(MONDAY, 36, 8), WeeklySlot(MONDAY, 40, 8)],
                None,
                "OVERLAPPING_AVAILABILITY",
            ),
            ([WeeklySlot(7, 36, 8)], None, "INVALID_DAY_OF_WEEK"),
            ([WeeklySlot(TUESDAY, 36, 8)], [MONDAY], "DAY_NOT_REPLACED"),
            ([WeeklySlot(MONDAY, 36, 0)], None, "INVALID_DURATION"),
            ([WeeklySlot(MONDAY, 96, 1)], None, "INVALID_SLOT"),
            ([], [-1], "INVALID_DAY_OF_WEEK"),
        ],
    )
    def test_rejects_malformed_entries_without_writing(
        self, service, instructor, entries, days, code
    ) -> None:
        with pytest.raises(ValidationException) as exc_info:
            service.set_weekly_availability(instructor.id, entries, days=days)

        assert exc_info.value.code == code
        assert _template(service, instructor.id) == [(MONDAY, 36, 32)]

    def test_entry_running_past_midnight(self, service, instructor) -> None:
        with pytest.raises(SlotRangeExceededException):
            service.set_weekly_availability(instructor.id, [WeeklySlot(MONDAY, 90, 8)])

    def test_failure_midway_keeps_the_previous_template(
        self, service, instructor, monkeypatch
    ) -> None:
        original_create = service.repository.create_weekly_entry
        calls = {"n": 0}

        def _fail_on_second(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RepositoryException("Failed to create WeeklyAvailabilityEntry")
            return original_create(*args, **kwargs)

        monkeypatch.setattr(service.repository, "create_weekly_entry", _fail_on_second)

        with pytest.raises(RepositoryException):
            service.set_weekly_availability(
                instructor.id, [WeeklySlot(TUESDAY, 36, 4), WeeklySlot(TUESDAY, 44, 4)]
            )

        assert _template(service, instructor.id) == [(MONDAY, 36, 32)]

    def test_unknown_instructor(self, service, make_user) -> None:
        student = make_user()

        with pytest.raises(NotFoundException) as exc_info:
            service.set_weekly_availability(student.id, [WeeklySlot(MONDAY, 36, 4)])

        assert exc_info.value.code == "INSTRUCTOR_NOT_FOUND"

    def test_existing_bookings_survive_a_cleared_week(
        self, service, booking_service, instructor
    ) -> None:
        booking_id = booking_service.book_lesson(instructor.id, None, LESSON_DAY, 40, 4, None)

        service.set_weekly_availability(instructor.id, [])

        bookings = booking_service.get_instructor_bookings(instructor.id)
        assert [booking.id for booking in bookings] == [booking_id]
        assert bookings[0].status == BookingStatus.BLOCKED.value


class TestBlockedIntervals:
    def test_added_block_splits_the_day(self, db, service, instructor) -> None:
        block = service.add_blocked_interval(instructor.id, _utc(12), _utc(13), reason="Lunch")

        assert block.id
        assert block.reason == "Lunch"
        assert AvailabilityResolver(db).get_instructor_availability(
            instructor.id, LESSON_DAY
        ) == [SlotInterval(36, 48), SlotInterval(52, 68)]

    def test_naive_bounds_are_read_as_utc(self, db, service, instructor) -> None:
        service.add_blocked_interval(
            instructor.id, _utc(9).replace(tzinfo=None), _utc(10).replace(tzinfo=None)
        )

        assert AvailabilityResolver(db).get_instructor_availability(
            instructor.id, LESSON_DAY
        ) == [SlotInterval(40, 68)]

    @pytest.mark.parametrize(
        "start, end, reason",
        [
            (_utc(13), _utc(12), None),
            (_utc(12), _utc(12), None),
            (LESSON_DAY, _utc(12), None),
            (_utc(12), _utc(13), "x" * 256),
        ],
    )
    def test_rejects_bad_blocks(self, db, service, instructor, start, end, reason) -> None:
        with pytest.raises(ValidationException) as exc_info:
            service.add_blocked_interval(instructor.id, start, end, reason=reason)

        assert exc_info.value.code == "INVALID_BLOCKED_TIME"
        assert db.query(BlockedInterval).count() == 0

    def test_unknown_instructor(self, service, make_user) -> None:
        with pytest.raises(NotFoundException):
            service.add_blocked_interval(make_user().id, _utc(12), _utc(13))

    def test_removing_a_block_reopens_the_time(self, db, service, instructor) -> None:
        block = service.add_blocked_interval(instructor.id, _utc(12), _utc(13))

        service.remove_blocked_interval(instructor.id, block.id)

        assert db.query(BlockedInterval).count() == 0
        assert AvailabilityResolver(db).get_instructor_availability(
            instructor.id, LESSON_DAY
        ) == [SlotInterval(36, 68)]

    def test_cannot_remove_another_instructors_block(
        self, db, service, instructor, make_instructor
    ) -> None:
        other = make_instructor()
        block = service.add_blocked_interval(other.id, _utc(12), _utc(13))

        with pytest.raises(NotFoundException) as exc_info:
            service.remove_blocked_interval(instructor.id, block.id)

        assert exc_info.value.code == "BLOCKED_INTERVAL_NOT_FOUND"
        assert db.query(BlockedInterval).count() == 1

    def test_unknown_block(self, service, instructor) -> None:
        with pytest.raises(NotFoundException) as exc_info:
            service.remove_blocked_interval(instructor.id, "01HZZZZZZZZZZZZZZZZZZZZZZZ")

        assert exc_info.value.code == "BLOCKED_INTERVAL_NOT_FOUND"

    def test_window_query_returns_overlapping_blocks(self, service, instructor) -> None:
        morning = service.add_blocked_interval(instructor.id, _utc(9), _utc(10))
        service.add_blocked_interval(
            instructor.id, _utc(9) + timedelta(days=3), _utc(10) + timedelta(days=3)
        )

        blocks = service.get_blocked_intervals(instructor.id, _utc(0), _utc(0) + timedelta(days=1))

        assert [block.id for block in blocks] == [morning.id]
