from __future__ import annotations

from datetime import date
from unittest.mock import Mock, patch

import pytest

from booking_engine.events.handlers import process_event
from booking_engine.models.booking import Booking


class RecordingSink:
    def __init__(self) -> None:
        self.sent = []

    def send(self, kind, recipient_id, payload) -> None:
        self.sent.append((kind, recipient_id, payload))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


def _booking() -> Booking:
    return Booking(
        id="b1",
        student_id="s1",
        instructor_id="i1",
        booking_date=date(2026, 6, 8),
        start_slot=36,
        duration=4,
        status="booked",
    )


def test_non_event_jobs_are_not_handled(sink) -> None:
    assert process_event("email:digest", {}, Mock(), sink) is False
    assert sink.sent == []


def test_unknown_event_is_consumed(sink) -> None:
    assert process_event("event:Mystery", {}, Mock(), sink) is True
    assert sink.sent == []


def test_credits_low_goes_to_user(sink) -> None:
    handled = process_event(
        "event:CreditsLow", {"user_id": "u1", "balance": 1, "threshold": 2}, Mock(), sink
    )

    assert handled is True
    assert sink.sent == [("credits_low", "u1", {"balance": 1, "threshold": 2})]


def test_cancellation_notifies_both_participants(sink) -> None:
    with patch(
        "booking_engine.events.handlers.BookingRepository.get_by_id", return_value=_booking()
    ):
        process_event(
            "event:BookingCancelled",
            {"booking_id": "b1", "cancelled_by": "student", "refund_method": "credits"},
            Mock(),
            sink,
        )

    assert [(kind, recipient) for kind, recipient, _ in sink.sent] == [
        ("booking_cancelled", "s1"),
        ("booking_cancelled", "i1"),
    ]
    message = sink.sent[0][2]
    assert message["start"] == "09:00"
    assert message["end"] == "10:00"
    assert message["refund_method"] == "credits"


def test_refund_notice_skips_missing_booking(sink) -> None:
    with patch("booking_engine.events.handlers.BookingRepository.get_by_id", return_value=None):
        assert process_event("event:RefundIssued", {"booking_id": "gone"}, Mock(), sink)

    assert sink.sent == []


def test_default_sink_logs(caplog) -> None:
    caplog.set_level("INFO", logger="booking_engine.services.notification_sink")

    process_event("event:CreditsExhausted", {"user_id": "u1", "lessons_completed": 3}, Mock())

    assert "credits_exhausted" in caplog.text
