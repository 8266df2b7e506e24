# backend/booking_engine/services/booking_transaction_service.py
"""
Booking Transaction Service for the booking engine.

Every booking request runs the same pipeline:

1. Validate inputs (date, slot range, duration, payment method)
2. Resolve availability; the interval must sit inside one open interval
3. Check conflicts against active bookings
4. Payment pre-check (credit balance, in-person eligibility, card on file)
5. Commit in one atomic unit: booking row plus its financial effect
6. Post-commit notifications (best effort, never fail the booking)

Steps 2 and 3 run again inside the unit after the instructor profile row is
locked, so two requests cannot both pass the checks against a stale
snapshot. The partial unique index on bookings is the last-resort guard.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
import logging
from typing import Callable, List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..core.booking_lock import booking_lock_sync
from ..core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ConflictException,
    DomainException,
    InsufficientCreditsException,
    NotFoundException,
    OutsideAvailabilityException,
    RepositoryException,
    ServiceException,
    ValidationException,
)
from ..core.slots import SlotInterval, duration_minutes, parse_booking_date, validate_slot
from ..events import BookingCancelled, BookingConfirmed, BookingRescheduled, EventPublisher
from ..models.booking import Booking, BookingStatus
from ..models.transaction import PaymentMethod, TransactionStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from .availability_resolver import AvailabilityResolver, contains_interval
from .base import BaseService
from .conflict_checker import ConflictChecker
from .credit_ledger import CreditLedger, validate_duration_class
from .credit_notification_service import CreditNotificationService
from .payment_gateway import PaymentGateway
from .pricing_service import PricingService
from .refund_service import RefundResult, RefundService

logger = logging.getLogger(__name__)

INSTRUCTOR_CONFLICT_MESSAGE = "This time slot conflicts with an existing booking"
PAYMENT_METHODS = tuple(method.value for method in PaymentMethod)


@dataclass
class _PaymentPlan:
    method: Optional[str]
    amount: Optional[Decimal] = None
    customer_ref: Optional[str] = None
    duration_minutes: Optional[int] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingTransactionService(BaseService):
    """
    Service owning booking creation, reschedule and cancellation.

    Each public operation is one atomic unit; the booking row and its credit,
    transaction or refund rows commit or roll back together.
    """

    @staticmethod
    def _is_deadlock_error(exc: BaseException) -> bool:
        orig = getattr(exc, "orig", None)
        pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if pgcode == "40P01":
            return True
        return "deadlock detected" in str(exc).lower()

    def __init__(
        self,
        db: Session,
        payment_gateway: Optional[PaymentGateway] = None,
        event_publisher: Optional[EventPublisher] = None,
        availability_resolver: Optional[AvailabilityResolver] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        credit_ledger: Optional[CreditLedger] = None,
        pricing_service: Optional[PricingService] = None,
        refund_service: Optional[RefundService] = None,
        credit_notification_service: Optional[CreditNotificationService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize booking transaction service.

        Args:
            db: Database session
            payment_gateway: Gateway used for card-on-file bookings and refunds
            event_publisher: Optional publisher for post-commit notifications
            clock: Optional UTC clock (tests pin it)
        """
        super().__init__(db)
        self._clock = clock or _utcnow
        self.payment_gateway = payment_gateway
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.event_publisher = event_publisher or EventPublisher(
            RepositoryFactory.create_background_job_repository(db)
        )
        self.availability_resolver = availability_resolver or AvailabilityResolver(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.credit_ledger = credit_ledger or CreditLedger(db, clock=self._clock)
        self.pricing_service = pricing_service or PricingService(db)
        self.credit_notification_service = (
            credit_notification_service
            or CreditNotificationService(
                db, credit_ledger=self.credit_ledger, event_publisher=self.event_publisher
            )
        )
        self.refund_service = refund_service or RefundService(
            db,
            payment_gateway=payment_gateway,
            credit_ledger=self.credit_ledger,
            event_publisher=self.event_publisher,
            credit_notification_service=self.credit_notification_service,
            clock=self._clock,
        )

    # Validation and checks

    def _validate_request(
        self,
        student_id: Optional[str],
        booking_date: Union[str, date],
        start_slot: int,
        duration: int,
        payment_method: Optional[str],
    ) -> tuple[date, SlotInterval]:
        target = parse_booking_date(booking_date)
        interval = SlotInterval.from_duration(validate_slot(start_slot), duration)

        if student_id is None:
            if payment_method is not None:
                raise ValidationException(
                    "Instructor self-blocks carry no payment method",
                    code="INVALID_PAYMENT_METHOD",
                    details={"payment_method": payment_method},
                )
        elif payment_method not in PAYMENT_METHODS:
            raise ValidationException(
                f"Invalid payment method. Must be one of: {', '.join(PAYMENT_METHODS)}",
                code="INVALID_PAYMENT_METHOD",
                details={"payment_method": payment_method},
            )
        elif payment_method == PaymentMethod.CREDITS.value:
            validate_duration_class(duration_minutes(duration))

        return target, interval

    def _check_availability_and_conflicts(
        self,
        instructor_id: str,
        target: date,
        interval: SlotInterval,
        exclude_booking_id: Optional[str] = None,
    ) -> None:
        open_intervals = self.availability_resolver.get_instructor_availability(
            instructor_id, target
        )
        if contains_interval(open_intervals, interval) is None:
            raise OutsideAvailabilityException(
                details={
                    "date": target.isoformat(),
                    "requested": str(interval),
                    "available": [str(open_interval) for open_interval in open_intervals],
                }
            )

        conflicts = self.conflict_checker.check_booking_conflicts(
            instructor_id, target, interval, exclude_booking_id
        )
        if conflicts:
            raise BookingConflictException(
                INSTRUCTOR_CONFLICT_MESSAGE,
                details={
                    "date": target.isoformat(),
                    "requested": str(interval),
                    "conflicting_booking_ids": [booking.id for booking in conflicts],
                },
            )

    def _plan_payment(
        self,
        instructor_id: str,
        student_id: Optional[str],
        duration: int,
        payment_method: Optional[str],
    ) -> _PaymentPlan:
        if student_id is None:
            return _PaymentPlan(method=None)

        if payment_method == PaymentMethod.CREDITS.value:
            minutes = duration_minutes(duration)
            if not self.credit_ledger.has_sufficient(student_id, minutes):
                prometheus_metrics.record_credit_debit("insufficient")
                raise InsufficientCreditsException(student_id, minutes)
            return _PaymentPlan(method=payment_method, duration_minutes=minutes)

        if payment_method == PaymentMethod.IN_PERSON.value:
            self.pricing_service.ensure_in_person_allowed(student_id)
            return _PaymentPlan(
                method=payment_method,
                amount=self.pricing_service.compute_lesson_price(instructor_id, duration),
            )

        student = self.user_repository.get_by_id(student_id)
        if student is None:
            raise NotFoundException(f"Student {student_id} not found", code="STUDENT_NOT_FOUND")
        if not student.payment_customer_ref:
            raise ValidationException(
                "Student has no card on file",
                code="MISSING_PAYMENT_CUSTOMER",
                details={"student_id": student_id},
            )
        if self.payment_gateway is None:
            raise BusinessRuleException(
                "No payment gateway configured", code="GATEWAY_NOT_CONFIGURED"
            )
        return _PaymentPlan(
            method=payment_method,
            amount=self.pricing_service.compute_lesson_price(instructor_id, duration),
            customer_ref=student.payment_customer_ref,
        )

    def _lock_instructor(self, instructor_id: str) -> None:
        profile = self.user_repository.lock_instructor_profile(instructor_id)
        if profile is None:
            raise NotFoundException(
                f"Instructor {instructor_id} not found", code="INSTRUCTOR_NOT_FOUND"
            )

    def _translate_persistence_error(self, exc: Exception) -> Exception:
        """Map a unique-index hit or deadlock inside the unit to a slot conflict."""
        cause = exc.__cause__ if isinstance(exc, (RepositoryException, ServiceException)) else exc
        if isinstance(cause, IntegrityError):
            return BookingConflictException(INSTRUCTOR_CONFLICT_MESSAGE)
        if isinstance(cause, OperationalError) and self._is_deadlock_error(cause):
            self.logger.warning("Deadlock while committing booking; reporting as conflict")
            return BookingConflictException(INSTRUCTOR_CONFLICT_MESSAGE)
        return exc

    # Book

    @BaseService.measure_operation("book_lesson")
    def book_lesson(
        self,
        instructor_id: str,
        student_id: Optional[str],
        booking_date: Union[str, date],
        start_slot: int,
        duration: int,
        payment_method: Optional[str],
    ) -> str:
        """
        Book a lesson (or an instructor self-block when ``student_id`` is None).

        Returns:
            The new booking ID

        Raises:
            ValidationException: Malformed date, slot, duration or payment method
            OutsideAvailabilityException: Interval not inside one open interval
            BookingConflictException: Interval overlaps an active booking
            InsufficientCreditsException: No credit of the duration class left
            PaymentMethodNotAllowedException: In-person payment disabled for student
            PaymentGatewayException: Card charge failed (nothing persisted)
        """
        try:
            booking_id = self._book_lesson(
                instructor_id, student_id, booking_date, start_slot, duration, payment_method
            )
        except DomainException as exc:
            prometheus_metrics.record_booking_outcome("book_lesson", exc.code)
            raise
        prometheus_metrics.record_booking_outcome("book_lesson", "committed")
        return booking_id

    def _book_lesson(
        self,
        instructor_id: str,
        student_id: Optional[str],
        booking_date: Union[str, date],
        start_slot: int,
        duration: int,
        payment_method: Optional[str],
    ) -> str:
        target, interval = self._validate_request(
            student_id, booking_date, start_slot, duration, payment_method
        )
        self._check_availability_and_conflicts(instructor_id, target, interval)
        plan = self._plan_payment(instructor_id, student_id, duration, payment_method)

        charge_reference: Optional[str] = None
        try:
            with self.transaction():
                self._lock_instructor(instructor_id)
                self._check_availability_and_conflicts(instructor_id, target, interval)

                booking = self.booking_repository.create(
                    instructor_id=instructor_id,
                    student_id=student_id,
                    booking_date=target,
                    start_slot=interval.start_slot,
                    duration=interval.duration,
                    status=(
                        BookingStatus.BOOKED.value if student_id else BookingStatus.BLOCKED.value
                    ),
                    payment_method=plan.method,
                )

                if plan.method == PaymentMethod.CREDITS.value:
                    self.credit_ledger.debit(
                        str(student_id),
                        int(plan.duration_minutes or 0),
                        booking.id,
                        use_transaction=False,
                    )
                elif plan.method == PaymentMethod.IN_PERSON.value:
                    self.transaction_repository.create(
                        user_id=student_id,
                        booking_id=booking.id,
                        amount=plan.amount,
                        payment_method=plan.method,
                        status=TransactionStatus.OUTSTANDING.value,
                    )
                elif plan.method == PaymentMethod.GATEWAY.value:
                    # Charge last so every local failure happens before money moves
                    with self.measure_operation_context("gateway_charge"):
                        charge_reference = self.payment_gateway.charge(  # type: ignore[union-attr]
                            Decimal(plan.amount or 0),
                            str(plan.customer_ref),
                            idempotency_key=f"booking:{booking.id}",
                        )
                    self.transaction_repository.create(
                        user_id=student_id,
                        booking_id=booking.id,
                        amount=plan.amount,
                        payment_method=plan.method,
                        status=TransactionStatus.COMPLETED.value,
                        external_reference=charge_reference,
                    )
        except Exception as exc:
            if charge_reference is not None:
                self._compensate_charge(charge_reference, plan)
            translated = self._translate_persistence_error(exc)
            if translated is exc:
                raise
            raise translated from exc

        self.log_operation(
            "book_lesson",
            booking_id=booking.id,
            instructor_id=instructor_id,
            student_id=student_id,
            payment_method=plan.method,
        )
        self._handle_post_booking_tasks(booking)
        return str(booking.id)

    def _compensate_charge(self, charge_reference: str, plan: _PaymentPlan) -> None:
        """Refund a charge whose booking failed to commit."""
        try:
            refund_reference = self.payment_gateway.refund(  # type: ignore[union-attr]
                charge_reference,
                plan.amount or Decimal("0"),
                idempotency_key=f"compensate:{charge_reference}",
            )
            self.logger.warning(
                "Compensating refund issued for uncommitted booking charge",
                extra={"charge_reference": charge_reference, "refund_reference": refund_reference},
            )
        except Exception as e:
            self.logger.error(
                f"Compensating refund failed for charge {charge_reference}: {str(e)}",
                extra={"charge_reference": charge_reference},
            )

    def _handle_post_booking_tasks(self, booking: Booking) -> None:
        """Queue the confirmation and refresh credit notifications after commit."""
        try:
            with self.transaction():
                self.event_publisher.publish(
                    BookingConfirmed(
                        booking_id=booking.id,
                        instructor_id=booking.instructor_id,
                        student_id=booking.student_id,
                        booking_date=booking.booking_date,
                        start_slot=int(booking.start_slot),
                        duration=int(booking.duration),
                        payment_method=booking.payment_method,
                        created_at=booking.created_at or self._clock(),
                    )
                )
        except Exception as e:
            self.logger.error(f"Failed to enqueue booking confirmation event: {str(e)}")

        if booking.payment_method == PaymentMethod.CREDITS.value and booking.student_id:
            try:
                self.credit_notification_service.check_user_credit_status(booking.student_id)
            except Exception as e:
                self.logger.error(f"Failed to refresh credit status: {str(e)}")

    # Reschedule

    @BaseService.measure_operation("reschedule_booking")
    def reschedule_booking(
        self,
        booking_id: str,
        new_date: Union[str, date],
        new_start_slot: int,
    ) -> Booking:
        """
        Move a booking to a new date and start slot, keeping its duration.

        The ledger is never touched: the duration class cannot change.
        """
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        if not booking.is_active:
            raise BusinessRuleException(
                "Cancelled bookings cannot be rescheduled",
                code="BOOKING_CANCELLED",
                details={"booking_id": booking_id},
            )

        target = parse_booking_date(new_date)
        interval = SlotInterval.from_duration(validate_slot(new_start_slot), int(booking.duration))
        instructor_id = booking.instructor_id
        self._check_availability_and_conflicts(instructor_id, target, interval, booking_id)

        previous_date = booking.booking_date
        previous_start_slot = int(booking.start_slot)
        try:
            with self.transaction():
                self._lock_instructor(instructor_id)
                locked = self.booking_repository.get_for_update(booking_id)
                if locked is None or not locked.is_active:
                    raise BusinessRuleException(
                        "Cancelled bookings cannot be rescheduled",
                        code="BOOKING_CANCELLED",
                        details={"booking_id": booking_id},
                    )
                self._check_availability_and_conflicts(
                    instructor_id, target, interval, booking_id
                )
                locked.booking_date = target
                locked.start_slot = interval.start_slot
                locked.rescheduled_at = self._clock()
                self.booking_repository.flush()
        except Exception as exc:
            translated = self._translate_persistence_error(exc)
            if isinstance(translated, DomainException):
                prometheus_metrics.record_booking_outcome("reschedule_booking", translated.code)
            if translated is exc:
                raise
            raise translated from exc

        prometheus_metrics.record_booking_outcome("reschedule_booking", "committed")
        self.log_operation(
            "reschedule_booking",
            booking_id=booking_id,
            previous=f"{previous_date} {previous_start_slot}",
            new=f"{target} {interval.start_slot}",
        )
        try:
            with self.transaction():
                self.event_publisher.publish(
                    BookingRescheduled(
                        booking_id=booking_id,
                        previous_date=previous_date,
                        previous_start_slot=previous_start_slot,
                        booking_date=target,
                        start_slot=interval.start_slot,
                        rescheduled_at=locked.rescheduled_at,
                    )
                )
        except Exception as e:
            self.logger.error(f"Failed to enqueue reschedule event: {str(e)}")
        return locked

    # Cancel

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str, actor_id: str) -> Optional[RefundResult]:
        """
        Cancel a booking and, when the student cancels early enough, refund it.

        Returns:
            The refund issued in the same unit, or None when no automatic
            refund applies (an admin may still call process_refund later)

        Raises:
            NotFoundException: Unknown booking
            BusinessRuleException: Booking already cancelled
            PaymentGatewayException: Gateway refund failed (cancel rolled back)
        """
        with booking_lock_sync(booking_id) as acquired:
            if not acquired:
                raise ConflictException(
                    "Booking is being modified by another request",
                    code="BOOKING_LOCKED",
                    details={"booking_id": booking_id},
                )
            with self.transaction():
                booking = self.booking_repository.get_for_update(booking_id)
                if booking is None:
                    raise NotFoundException(
                        f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND"
                    )
                if not booking.is_active:
                    raise BusinessRuleException(
                        "Booking is already cancelled",
                        code="BOOKING_ALREADY_CANCELLED",
                        details={"booking_id": booking_id},
                    )

                booking.cancel(actor_id)
                voided = self.transaction_repository.cancel_outstanding_for_booking(booking_id)
                if voided:
                    self.logger.info(
                        "Voided outstanding in-person charge",
                        extra={"booking_id": booking_id, "count": voided},
                    )

                refund_result = self._automatic_refund_in_unit(booking, actor_id)
                self.booking_repository.flush()

        prometheus_metrics.record_booking_outcome("cancel_booking", "committed")
        self.log_operation(
            "cancel_booking",
            booking_id=booking_id,
            actor_id=actor_id,
            refunded=refund_result is not None,
        )
        self._handle_post_cancel_tasks(booking, actor_id, refund_result)
        return refund_result

    def _automatic_refund_in_unit(
        self, booking: Booking, actor_id: str
    ) -> Optional[RefundResult]:
        if not booking.student_id or actor_id != booking.student_id:
            return None
        if self.refund_service.get_refund_status(booking.id) != "none":
            return None
        return self.refund_service.process_automatic_refund(
            booking.id, actor_id, use_transaction=False
        )

    def _cancelled_by_role(self, booking: Booking, actor_id: str) -> str:
        if actor_id == booking.student_id:
            return "student"
        if actor_id == booking.instructor_id:
            return "instructor"
        return "admin"

    def _handle_post_cancel_tasks(
        self, booking: Booking, actor_id: str, refund_result: Optional[RefundResult]
    ) -> None:
        try:
            with self.transaction():
                self.event_publisher.publish(
                    BookingCancelled(
                        booking_id=booking.id,
                        cancelled_by=self._cancelled_by_role(booking, actor_id),
                        cancelled_at=booking.cancelled_at or self._clock(),
                        refund_method=refund_result.method if refund_result else None,
                        refund_amount=str(refund_result.amount) if refund_result else None,
                    )
                )
        except Exception as e:
            self.logger.error(f"Failed to enqueue cancellation event: {str(e)}")

        if refund_result is not None:
            self.refund_service.handle_post_refund_tasks(refund_result)

    # Queries

    def get_instructor_availability(
        self, instructor_id: str, target_date: Union[str, date]
    ) -> List[SlotInterval]:
        return self.availability_resolver.get_instructor_availability(instructor_id, target_date)


    def _parse_date_range(
        self,
        start_date: Optional[Union[str, date]],
        end_date: Optional[Union[str, date]],
    ) -> Tuple[Optional[date], Optional[date]]:
        start = parse_booking_date(start_date) if start_date is not None else None
        end = parse_booking_date(end_date) if end_date is not None else None
        if start is not None and end is not None and start > end:
            raise ValidationException(
                "start_date must not be after end_date",
                code="INVALID_DATE_RANGE",
                details={"start_date": start.isoformat(), "end_date": end.isoformat()},
            )
        return start, end

    @BaseService.measure_operation("get_instructor_bookings")
    def get_instructor_bookings(
        self,
        instructor_id: str,
        start_date: Optional[Union[str, date]] = None,
        end_date: Optional[Union[str, date]] = None,
        include_cancelled: bool = False,
    ) -> List[Booking]:
        """
        List an instructor's bookings and self-blocks.

        Both date bounds are inclusive and optional. Cancelled rows are left out
        unless ``include_cancelled`` is set.
        """
        start, end = self._parse_date_range(start_date, end_date)
        return self.booking_repository.get_instructor_bookings(
            instructor_id, start_date=start, end_date=end, include_cancelled=include_cancelled
        )

    @BaseService.measure_operation("get_student_bookings")
    def get_student_bookings(
        self,
        student_id: str,
        start_date: Optional[Union[str, date]] = None,
        end_date: Optional[Union[str, date]] = None,
        include_cancelled: bool = False,
    ) -> List[Booking]:
        start, end = self._parse_date_range(start_date, end_date)
        return self.booking_repository.get_student_bookings(
            student_id, start_date=start, end_date=end, include_cancelled=include_cancelled
        )
