from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from booking_engine.core.exceptions import (
    InvalidSlotException,
    SlotRangeExceededException,
    ValidationException,
)
from booking_engine.core.slots import (
    SlotInterval,
    datetime_range_to_slots,
    day_of_week,
    end_slot,
    format_slot,
    parse_booking_date,
    slot_start_datetime,
    to_clock,
    to_slot,
    validate_slot,
)


class TestSlotConversion:
    @pytest.mark.parametrize(
        "hour, minute, slot",
        [(0, 0, 0), (0, 14, 0), (0, 15, 1), (9, 0, 36), (12, 45, 51), (23, 45, 95), (23, 59, 95)],
    )
    def test_to_slot(self, hour: int, minute: int, slot: int) -> None:
        assert to_slot(hour, minute) == slot

    def test_to_clock_round_trips_slot_boundaries(self) -> None:
        assert to_clock(0) == (0, 0)
        assert to_clock(37) == (9, 15)
        assert to_clock(95) == (23, 45)

    @pytest.mark.parametrize("slot", [-1, 96, 100, 1.0, "3", None, True])
    def test_validate_slot_rejects(self, slot) -> None:
        with pytest.raises(InvalidSlotException):
            validate_slot(slot)

    def test_to_slot_rejects_bad_clock(self) -> None:
        with pytest.raises(InvalidSlotException):
            to_slot(24, 0)
        with pytest.raises(InvalidSlotException):
            to_slot(10, 60)

    def test_format_slot(self) -> None:
        assert format_slot(0) == "00:00"
        assert format_slot(53) == "13:15"
        assert format_slot(96) == "24:00"


class TestEndSlot:
    def test_interval_may_end_at_midnight(self) -> None:
        assert end_slot(92, 4) == 96

    def test_interval_may_not_run_past_midnight(self) -> None:
        with pytest.raises(SlotRangeExceededException) as exc_info:
            end_slot(94, 4)

        assert exc_info.value.details == {"start_slot": 94, "duration": 4}

    @pytest.mark.parametrize("duration", [0, -2, 2.5])
    def test_duration_must_be_positive_integer(self, duration) -> None:
        with pytest.raises(ValidationException):
            end_slot(10, duration)


class TestDates:
    def test_strict_iso_date(self) -> None:
        assert parse_booking_date("2026-06-08") == date(2026, 6, 8)
        assert parse_booking_date(date(2026, 6, 8)) == date(2026, 6, 8)

    @pytest.mark.parametrize(
        "value", ["2026-6-8", "08/06/2026", "2026-02-30", "20260608", "", 20260608]
    )
    def test_rejects_malformed_dates(self, value) -> None:
        with pytest.raises(ValidationException) as exc_info:
            parse_booking_date(value)

        assert exc_info.value.code == "INVALID_DATE"

    def test_rejects_datetimes(self) -> None:
        with pytest.raises(ValidationException):
            parse_booking_date(datetime(2026, 6, 8, 9, 0))

    def test_day_of_week_starts_on_sunday(self) -> None:
        assert day_of_week(date(2026, 6, 7)) == 0  # Sunday
        assert day_of_week(date(2026, 6, 8)) == 1  # Monday
        assert day_of_week(date(2026, 6, 13)) == 6  # Saturday

    def test_slot_start_datetime_is_utc(self) -> None:
        assert slot_start_datetime(date(2026, 6, 8), 37) == datetime(
            2026, 6, 8, 9, 15, tzinfo=timezone.utc
        )


class TestDatetimeRangeProjection:
    DAY = date(2026, 6, 8)

    def _at(self, hour: int, minute: int = 0, days: int = 0) -> datetime:
        return datetime(2026, 6, 8, hour, minute, tzinfo=timezone.utc) + timedelta(days=days)

    def test_whole_slots(self) -> None:
        assert datetime_range_to_slots(self.DAY, self._at(12), self._at(13)) == SlotInterval(48, 52)

    def test_partial_slots_round_outward(self) -> None:
        assert datetime_range_to_slots(self.DAY, self._at(12, 5), self._at(12, 50)) == SlotInterval(
            48, 52
        )

    def test_clipped_to_day_window(self) -> None:
        assert datetime_range_to_slots(
            self.DAY, self._at(20, days=-1), self._at(2, days=1)
        ) == SlotInterval(0, 96)

    def test_naive_values_are_utc(self) -> None:
        assert datetime_range_to_slots(
            self.DAY, datetime(2026, 6, 8, 9, 0), datetime(2026, 6, 8, 10, 0)
        ) == SlotInterval(36, 40)

    def test_range_on_another_day(self) -> None:
        assert datetime_range_to_slots(self.DAY, self._at(9, days=1), self._at(10, days=1)) is None


class TestSlotInterval:
    def test_touching_intervals_do_not_overlap(self) -> None:
        assert not SlotInterval(36, 40).overlaps(SlotInterval(40, 44))
        assert SlotInterval(36, 41).overlaps(SlotInterval(40, 44))

    def test_contains(self) -> None:
        assert SlotInterval(36, 68).contains(SlotInterval(36, 40))
        assert SlotInterval(36, 68).contains(SlotInterval(36, 68))
        assert not SlotInterval(36, 68).contains(SlotInterval(66, 70))

    def test_subtract(self) -> None:
        workday = SlotInterval(36, 68)

        assert workday.subtract(SlotInterval(48, 52)) == [SlotInterval(36, 48), SlotInterval(52, 68)]
        assert workday.subtract(SlotInterval(30, 40)) == [SlotInterval(40, 68)]
        assert workday.subtract(SlotInterval(0, 96)) == []
        assert workday.subtract(SlotInterval(68, 70)) == [workday]

    @pytest.mark.parametrize("start, end", [(5, 5), (10, 4), (-1, 3), (90, 97)])
    def test_invalid_bounds(self, start: int, end: int) -> None:
        with pytest.raises(ValidationException):
            SlotInterval(start, end)

    def test_label(self) -> None:
        assert str(SlotInterval(36, 48)) == "09:00-12:00"
        assert SlotInterval.from_duration(92, 4).label() == "23:00-24:00"
