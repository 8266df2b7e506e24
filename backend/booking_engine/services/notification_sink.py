"""Notification delivery seam used by the event handlers."""

from __future__ import annotations

import logging
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def send(self, kind: str, recipient_id: str, payload: Dict[str, Any]) -> None:
        """Deliver one message; raising makes the worker retry the job."""
        ...


class LoggingNotificationSink:
    """Default sink: records messages in the log instead of delivering them."""

    def send(self, kind: str, recipient_id: str, payload: Dict[str, Any]) -> None:
        logger.info(
            "Notification %s for %s",
            kind,
            recipient_id,
            extra={"notification_kind": kind, "recipient_id": recipient_id, "payload": payload},
        )
