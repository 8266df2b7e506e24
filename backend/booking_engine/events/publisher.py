"""Event publisher - queues events for background processing."""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Protocol

from ..repositories.background_job_repository import BackgroundJobRepository


class Event(Protocol):
    """Protocol for event types."""

    def to_dict(self) -> Dict[str, Any]:
        ...


class EventPublisher:
    """Publishes domain events to the job queue for async processing."""

    def __init__(self, job_repository: BackgroundJobRepository):
        self.job_repo = job_repository

    def publish(self, event: Event) -> str:
        """
        Queue an event for background processing.

        Events are processed by the background worker, which routes them
        to the appropriate handler based on event type. Returns the job id.
        """
        event_type = type(event).__name__
        payload = event.to_dict()

        # Convert dates, datetimes and decimals for JSON storage
        for key, value in payload.items():
            if isinstance(value, date):
                payload[key] = value.isoformat()
            elif isinstance(value, Decimal):
                payload[key] = str(value)

        return self.job_repo.enqueue(type=f"event:{event_type}", payload=payload)
