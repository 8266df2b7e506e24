# backend/booking_engine/services/refund_service.py
"""
Refund Engine for the booking engine.

Reverses a booking's financial effect exactly once:
- credit-paid bookings get one credit of the lesson's duration class back
- gateway-paid bookings get the original charge refunded at the gateway

Provenance is derived from the ledger and transaction history, never from
what the caller asserts. A credit usage record wins over a gateway charge
when both exist. The unique index on ``refunds.booking_id`` is the final
guard against double refunds.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Callable, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.booking_lock import booking_lock_sync
from ..core.exceptions import (
    AlreadyRefundedException,
    BusinessRuleException,
    ConflictException,
    NotFoundException,
    RefundMethodMismatchException,
    RepositoryException,
    ValidationException,
)
from ..core.slots import duration_minutes as slots_to_minutes
from ..events import EventPublisher, RefundIssued
from ..models.booking import Booking
from ..models.credit import CreditUsageRecord
from ..models.refund import Refund, RefundMethod
from ..models.transaction import Transaction
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from .base import BaseService
from .credit_ledger import CreditLedger
from .credit_notification_service import CreditNotificationService
from .payment_gateway import PaymentGateway
from .refund_policy_engine import RefundPolicyEngine

logger = logging.getLogger(__name__)

CREDIT_REFUND_AMOUNT = Decimal("0.00")

REFUND_STATUS_NONE = "none"
REFUND_STATUS_CREDIT = "refunded_credit"
REFUND_STATUS_GATEWAY = "refunded_gateway"


@dataclass(frozen=True)
class RefundInfo:
    booking_id: str
    student_id: Optional[str]
    provenance: Optional[str]  # 'credit', 'gateway' or None (nothing to refund)
    duration_minutes: int
    amount: Decimal
    original_transaction_id: Optional[str] = None
    charge_reference: Optional[str] = None
    eligible_for_automatic_refund: bool = False

    @property
    def refundable(self) -> bool:
        return self.provenance is not None


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    booking_id: str
    method: str
    amount: Decimal
    refund_reference: Optional[str]
    refunded_by: str
    created_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _locked_error(booking_id: str) -> ConflictException:
    return ConflictException(
        "Booking is being modified by another request",
        code="BOOKING_LOCKED",
        details={"booking_id": booking_id},
    )


class RefundService(BaseService):
    """Issues credit and gateway refunds for bookings."""

    def __init__(
        self,
        db: Session,
        payment_gateway: Optional[PaymentGateway] = None,
        policy_engine: Optional[RefundPolicyEngine] = None,
        credit_ledger: Optional[CreditLedger] = None,
        event_publisher: Optional[EventPublisher] = None,
        credit_notification_service: Optional[CreditNotificationService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(db)
        self._clock = clock or _utcnow
        self.payment_gateway = payment_gateway
        self.policy_engine = policy_engine or RefundPolicyEngine(clock=self._clock)
        self.credit_ledger = credit_ledger or CreditLedger(db, clock=self._clock)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.refund_repository = RepositoryFactory.create_refund_repository(db)
        self.event_publisher = event_publisher or EventPublisher(
            RepositoryFactory.create_background_job_repository(db)
        )
        self.credit_notification_service = (
            credit_notification_service
            or CreditNotificationService(db, credit_ledger=self.credit_ledger)
        )

    # Provenance

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    def _resolve_provenance(
        self, booking: Booking
    ) -> Tuple[Optional[str], Optional[CreditUsageRecord], Optional[Transaction]]:
        usage = self.credit_repository.get_usage_for_booking(booking.id)
        if usage is not None:
            return RefundMethod.CREDIT.value, usage, None
        charge = self.transaction_repository.get_gateway_charge(booking.id)
        if charge is not None:
            return RefundMethod.GATEWAY.value, None, charge
        return None, None, None

    def _build_refund_info(self, booking: Booking) -> RefundInfo:
        provenance, usage, charge = self._resolve_provenance(booking)
        if usage is not None:
            duration_minutes = int(usage.duration_minutes)
        else:
            duration_minutes = slots_to_minutes(int(booking.duration))
        return RefundInfo(
            booking_id=booking.id,
            student_id=booking.student_id,
            provenance=provenance,
            duration_minutes=duration_minutes,
            amount=Decimal(str(charge.amount)) if charge is not None else CREDIT_REFUND_AMOUNT,
            original_transaction_id=charge.id if charge is not None else None,
            charge_reference=charge.external_reference if charge is not None else None,
            eligible_for_automatic_refund=self.policy_engine.is_eligible_for_automatic_refund(
                booking
            ),
        )

    @BaseService.measure_operation("get_refund_info")
    def get_refund_info(self, booking_id: str) -> RefundInfo:
        """
        Describe how a booking would be refunded.

        Raises:
            NotFoundException: Unknown booking
            AlreadyRefundedException: A refund already exists
        """
        booking = self._get_booking(booking_id)
        if self.refund_repository.get_by_booking_id(booking_id) is not None:
            raise AlreadyRefundedException(booking_id)
        return self._build_refund_info(booking)

    def get_refund_status(self, booking_id: str) -> str:
        self._get_booking(booking_id)
        refund = self.refund_repository.get_by_booking_id(booking_id)
        if refund is None:
            return REFUND_STATUS_NONE
        if refund.method == RefundMethod.CREDIT.value:
            return REFUND_STATUS_CREDIT
        return REFUND_STATUS_GATEWAY

    def is_eligible_for_automatic_refund(self, booking: Booking) -> bool:
        return self.policy_engine.is_eligible_for_automatic_refund(booking)

    # Refund execution

    @BaseService.measure_operation("process_refund")
    def process_refund(
        self,
        booking_id: str,
        method: str,
        actor_id: str,
        reason: Optional[str] = None,
        *,
        use_transaction: bool = True,
        trigger: str = "manual",
    ) -> RefundResult:
        """
        Refund a booking through ``method``.

        With ``use_transaction=False`` the refund joins the caller's unit; the
        caller then owns the booking mutex and the post-commit notifications.

        Raises:
            NotFoundException: Unknown booking
            AlreadyRefundedException: Booking already refunded
            RefundMethodMismatchException: ``method`` differs from provenance
            PaymentGatewayException: Gateway refused the refund (nothing persisted)
        """
        if method not in (RefundMethod.CREDIT.value, RefundMethod.GATEWAY.value):
            raise ValidationException(
                f"Invalid refund method '{method}'",
                code="INVALID_REFUND_METHOD",
                details={"method": method},
            )

        if not use_transaction:
            return self._refund_in_unit(booking_id, method, actor_id, reason, trigger)

        with booking_lock_sync(booking_id) as acquired:
            if not acquired:
                raise _locked_error(booking_id)
            with self.transaction():
                result = self._refund_in_unit(booking_id, method, actor_id, reason, trigger)

        self.handle_post_refund_tasks(result)
        return result

    def process_automatic_refund(
        self, booking_id: str, actor_id: str, *, use_transaction: bool = True
    ) -> Optional[RefundResult]:
        """
        Refund a booking if the time policy allows it.

        Returns:
            None when the booking is too close to its start or has nothing
            refundable; otherwise the refund result
        """
        info = self.get_refund_info(booking_id)
        if not info.eligible_for_automatic_refund or info.provenance is None:
            self.logger.info(
                "Booking not eligible for automatic refund",
                extra={"booking_id": booking_id, "provenance": info.provenance},
            )
            return None
        return self.process_refund(
            booking_id,
            info.provenance,
            actor_id,
            reason="Automatic refund for early cancellation",
            use_transaction=use_transaction,
            trigger="automatic",
        )

    def _refund_in_unit(
        self,
        booking_id: str,
        method: str,
        actor_id: str,
        reason: Optional[str],
        trigger: str,
    ) -> RefundResult:
        info = self.get_refund_info(booking_id)
        if info.provenance != method:
            raise RefundMethodMismatchException(method, info.provenance)

        if method == RefundMethod.CREDIT.value:
            refund = self._insert_refund_row(
                info,
                method=method,
                actor_id=actor_id,
                reason=reason,
                amount=CREDIT_REFUND_AMOUNT,
                refund_reference=f"credit:{booking_id}",
            )
            self.credit_ledger.credit(
                str(info.student_id),
                info.duration_minutes,
                1,
                None,
                use_transaction=False,
            )
        else:
            if not info.charge_reference:
                raise BusinessRuleException(
                    "Original charge has no gateway reference",
                    code="MISSING_CHARGE_REFERENCE",
                    details={"booking_id": booking_id},
                )
            if self.payment_gateway is None:
                raise BusinessRuleException(
                    "No payment gateway configured for gateway refunds",
                    code="GATEWAY_NOT_CONFIGURED",
                )
            # Row first: a concurrent refund trips the unique index before the gateway call
            refund = self._insert_refund_row(
                info,
                method=method,
                actor_id=actor_id,
                reason=reason,
                amount=info.amount,
                refund_reference=None,
            )
            with self.measure_operation_context("gateway_refund"):
                refund.refund_reference = self.payment_gateway.refund(
                    info.charge_reference,
                    info.amount,
                    idempotency_key=f"refund:{booking_id}",
                )
            self.refund_repository.flush()

        prometheus_metrics.record_refund(method, trigger)
        self.log_operation(
            "process_refund",
            booking_id=booking_id,
            method=method,
            trigger=trigger,
            actor_id=actor_id,
        )
        return RefundResult(
            refund_id=refund.id,
            booking_id=booking_id,
            method=method,
            amount=Decimal(str(refund.amount)),
            refund_reference=refund.refund_reference,
            refunded_by=actor_id,
            created_at=refund.created_at or self._clock(),
        )

    def _insert_refund_row(
        self,
        info: RefundInfo,
        *,
        method: str,
        actor_id: str,
        reason: Optional[str],
        amount: Decimal,
        refund_reference: Optional[str],
    ) -> Refund:
        try:
            return self.refund_repository.create(
                booking_id=info.booking_id,
                original_transaction_id=info.original_transaction_id,
                refund_reference=refund_reference,
                amount=amount,
                method=method,
                refunded_by=actor_id,
                reason=reason,
            )
        except RepositoryException as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise AlreadyRefundedException(info.booking_id) from exc
            raise

    def handle_post_refund_tasks(self, result: RefundResult) -> None:
        """Queue the refund notice and refresh credit notifications; never raises."""
        try:
            with self.transaction():
                self.event_publisher.publish(
                    RefundIssued(
                        booking_id=result.booking_id,
                        refund_id=result.refund_id,
                        method=result.method,
                        amount=str(result.amount),
                        refunded_by=result.refunded_by,
                        created_at=result.created_at,
                    )
                )
        except Exception as e:
            self.logger.error(f"Failed to enqueue refund notification event: {str(e)}")

        if result.method != RefundMethod.CREDIT.value:
            return
        booking = self.booking_repository.get_by_id(result.booking_id)
        if booking is None or not booking.student_id:
            return
        try:
            self.credit_notification_service.check_user_credit_status(booking.student_id)
        except Exception as e:
            self.logger.error(f"Failed to refresh credit status: {str(e)}")
