"""
Credit threshold notifications.

The last observed balance is persisted on ``users.last_known_credits`` so a
crossing is detected once no matter which process observes it. Only
downward crossings notify:

- above zero -> zero queues CreditsExhausted
- above the threshold -> 1..threshold queues CreditsLow

The first observation (no stored balance) only records the balance.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..events import CreditsExhausted, CreditsLow, EventPublisher
from ..repositories import RepositoryFactory
from .base import BaseService
from .credit_ledger import CreditLedger

logger = logging.getLogger(__name__)


class CreditNotificationService(BaseService):
    def __init__(
        self,
        db: Session,
        credit_ledger: Optional[CreditLedger] = None,
        event_publisher: Optional[EventPublisher] = None,
        threshold: Optional[int] = None,
    ):
        super().__init__(db)
        self.credit_ledger = credit_ledger or CreditLedger(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.event_publisher = event_publisher or EventPublisher(
            RepositoryFactory.create_background_job_repository(db)
        )
        self.threshold = threshold if threshold is not None else settings.low_credit_threshold

    @BaseService.measure_operation("check_user_credit_status")
    def check_user_credit_status(self, user_id: str) -> Optional[str]:
        """
        Record the current balance and queue a notice on a downward crossing.

        Returns:
            The event type queued, or None
        """
        with self.transaction():
            user = self.user_repository.get_by_id(user_id)
            if user is None:
                self.logger.warning("Credit status check for unknown user %s", user_id)
                return None

            previous = user.last_known_credits
            current = self.credit_ledger.get_total_balance(user_id)
            self.user_repository.set_last_known_credits(user_id, current)

            if previous is None or current >= previous:
                return None

            if previous > 0 and current == 0:
                lessons = self.credit_ledger.count_usage(user_id)
                self.event_publisher.publish(
                    CreditsExhausted(user_id=user_id, lessons_completed=lessons)
                )
                self.logger.info(
                    "Credits exhausted", extra={"user_id": user_id, "lessons": lessons}
                )
                return "CreditsExhausted"

            if previous > self.threshold and 0 < current <= self.threshold:
                self.event_publisher.publish(
                    CreditsLow(user_id=user_id, balance=current, threshold=self.threshold)
                )
                self.logger.info("Credits low", extra={"user_id": user_id, "balance": current})
                return "CreditsLow"

            return None
