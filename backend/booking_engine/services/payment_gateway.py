# backend/booking_engine/services/payment_gateway.py
"""
Payment gateway seam.

The booking and refund services see the gateway only as an opaque
charge/refund service described by ``PaymentGateway``. ``StripePaymentGateway``
is the production implementation: an off-session charge against the
customer's default card, and refunds against the resulting PaymentIntent.
"""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Optional, Protocol

import stripe

from ..core.config import settings
from ..core.exceptions import PaymentGatewayException
from .pricing_service import to_cents

logger = logging.getLogger(__name__)

# PaymentIntent statuses that mean money moved (or is moving) to us
CHARGE_ACCEPTED_STATUSES = ("succeeded", "processing")
REFUND_ACCEPTED_STATUSES = ("succeeded", "pending")


class PaymentGateway(Protocol):
    def charge(self, amount: Decimal, customer_ref: str, *, idempotency_key: str) -> str:
        """Charge the customer's card on file; returns the charge reference."""
        ...

    def refund(self, charge_reference: str, amount: Decimal, *, idempotency_key: str) -> str:
        """Refund (part of) a previous charge; returns the refund reference."""
        ...


class StripePaymentGateway:
    """PaymentGateway backed by the Stripe API."""

    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None):
        self.currency = (currency or settings.currency).lower()
        self.stripe_configured = False

        key = api_key
        if key is None and settings.stripe_secret_key:
            key = settings.stripe_secret_key.get_secret_value()

        if key:
            stripe.api_key = key
            # Charges and refunds run while the instructor row lock is held
            stripe.default_http_client = stripe.RequestsClient(
                timeout=settings.stripe_timeout_seconds
            )
            # 1 retry for transient network failures; the idempotency key makes it safe
            stripe.max_network_retries = 1
            self.stripe_configured = True
            logger.info("Stripe payment gateway configured")
        else:
            logger.warning("Stripe secret key not configured - gateway calls will fail")

    def _require_configured(self) -> None:
        if not self.stripe_configured:
            raise PaymentGatewayException("Payment gateway is not configured")

    def _default_payment_method(self, customer_ref: str) -> str:
        customer = stripe.Customer.retrieve(customer_ref)
        invoice_settings = getattr(customer, "invoice_settings", None)
        payment_method = getattr(invoice_settings, "default_payment_method", None)
        if not payment_method:
            raise PaymentGatewayException(
                "Customer has no default payment method on file",
                details={"customer_ref": customer_ref},
            )
        if not isinstance(payment_method, str):
            payment_method = payment_method.id
        return str(payment_method)

    def charge(self, amount: Decimal, customer_ref: str, *, idempotency_key: str) -> str:
        self._require_configured()
        amount_cents = to_cents(amount)
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=self.currency,
                customer=customer_ref,
                payment_method=self._default_payment_method(customer_ref),
                confirm=True,
                off_session=True,
                metadata={"idempotency_key": idempotency_key},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating charge: {str(e)}")
            raise PaymentGatewayException(f"Failed to charge payment method: {str(e)}") from e

        status = getattr(intent, "status", None)
        if status not in CHARGE_ACCEPTED_STATUSES:
            logger.warning(
                "Stripe charge not completed",
                extra={"payment_intent_id": intent.id, "status": status},
            )
            raise PaymentGatewayException(
                f"Charge was not completed (status: {status})",
                details={"payment_intent_id": intent.id, "status": status},
            )

        logger.info(
            "Stripe charge created",
            extra={"payment_intent_id": intent.id, "amount_cents": amount_cents},
        )
        return str(intent.id)

    def refund(self, charge_reference: str, amount: Decimal, *, idempotency_key: str) -> str:
        self._require_configured()
        amount_cents = to_cents(amount)
        try:
            refund = stripe.Refund.create(
                payment_intent=charge_reference,
                amount=amount_cents,
                reason="requested_by_customer",
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating refund: {str(e)}")
            raise PaymentGatewayException(f"Failed to refund payment: {str(e)}") from e

        status = getattr(refund, "status", None)
        if status not in REFUND_ACCEPTED_STATUSES:
            raise PaymentGatewayException(
                f"Refund was not accepted (status: {status})",
                details={"refund_id": refund.id, "status": status},
            )

        logger.info(
            "Stripe refund created",
            extra={"refund_id": refund.id, "payment_intent_id": charge_reference},
        )
        return str(refund.id)
