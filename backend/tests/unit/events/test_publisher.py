from __future__ import annotations

from datetime import date, datetime, timezone
from unittest.mock import Mock

from booking_engine.events import BookingConfirmed, CreditsLow, EventPublisher


def test_publish_queues_event_job() -> None:
    job_repo = Mock()
    job_repo.enqueue.return_value = "job-1"
    publisher = EventPublisher(job_repo)

    job_id = publisher.publish(CreditsLow(user_id="u1", balance=2, threshold=2))

    assert job_id == "job-1"
    job_repo.enqueue.assert_called_once_with(
        type="event:CreditsLow", payload={"user_id": "u1", "balance": 2, "threshold": 2}
    )


def test_payload_is_json_friendly() -> None:
    job_repo = Mock()
    publisher = EventPublisher(job_repo)
    created_at = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)

    publisher.publish(
        BookingConfirmed(
            booking_id="b1",
            instructor_id="i1",
            student_id="s1",
            booking_date=date(2026, 6, 8),
            start_slot=36,
            duration=2,
            payment_method="credits",
            created_at=created_at,
        )
    )

    payload = job_repo.enqueue.call_args.kwargs["payload"]
    assert payload["booking_date"] == "2026-06-08"
    assert payload["created_at"] == created_at.isoformat()
    assert payload["start_slot"] == 36
    assert payload["student_id"] == "s1"
