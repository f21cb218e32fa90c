"""
Checkout initiation for single sessions and package subscriptions.

Checkout records the payment as PENDING under the Stripe reference that
the later webhook will carry, then hands the client a secret to confirm the
charge with. Nothing reaches the ledgers until the webhook arrives.

Usage:
    from billing.services import CheckoutService

    checkout = CheckoutService.start_single_session(
        client=request.user,
        psychologist_id=psychologist_id,
        appointment_window=(start, end),
    )
    checkout.client_secret  # confirmed client-side
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from billing.adapters import (
    CreatePaymentIntentParams,
    CreateSubscriptionParams,
    IdempotencyKeyGenerator,
    StripeAdapter,
)
from billing.models import Payment, Subscription
from billing.services.payments import PaymentService
from billing.state_machines import PackageKind, PaymentKind
from core.exceptions import NotFoundError, ValidationError
from core.services import BaseService
from practice.models import Psychologist
from practice.services import PricingCatalog

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from django.db.models import QuerySet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    """A started checkout: the pending payment and what the client confirms."""

    payment: Payment
    client_secret: str | None
    subscription_reference: str | None = None


class CheckoutService(BaseService):
    """Start checkouts and read back a client's subscriptions."""

    @staticmethod
    def _bookable_psychologist(psychologist_id: uuid.UUID) -> Psychologist:
        psychologist = Psychologist.objects.filter(id=psychologist_id, is_active=True).first()
        if psychologist is None:
            raise NotFoundError(
                f"Psychologist {psychologist_id} not found",
                error_code="PSYCHOLOGIST_NOT_FOUND",
                details={"psychologist_id": str(psychologist_id)},
            )
        return psychologist

    @staticmethod
    def _require_chargeable(base_amount_cents: int, psychologist_id: uuid.UUID) -> None:
        if base_amount_cents <= 0:
            raise ValidationError(
                "Nothing to charge for this checkout",
                error_code="INVALID_PRICE",
                details={"psychologist_id": str(psychologist_id)},
            )

    @staticmethod
    def _window_metadata(appointment_window: tuple[datetime, datetime] | None) -> dict[str, str]:
        if appointment_window is None:
            return {}
        start, end = appointment_window
        return {
            "appointment_start_time": start.isoformat(),
            "appointment_end_time": end.isoformat(),
        }

    @classmethod
    def start_single_session(
        cls,
        *,
        client,
        psychologist_id: uuid.UUID,
        appointment_window: tuple[datetime, datetime] | None = None,
    ) -> CheckoutSession:
        """
        Start paying for one session at the psychologist's session price.

        Raises:
            NotFoundError: Unknown psychologist or no pricing
            ValidationError: The session price is zero
            StripeError: Stripe rejected or could not take the request;
                no payment is left behind
        """
        psychologist = cls._bookable_psychologist(psychologist_id)
        pricing = PricingCatalog.get_pricing(psychologist.id)
        cls._require_chargeable(pricing.session_price_cents, psychologist.id)
        window_metadata = cls._window_metadata(appointment_window)

        with cls.atomic():
            payment = PaymentService.create_pending_payment(
                payer=client,
                provider=psychologist,
                kind=PaymentKind.SINGLE_SESSION,
                base_amount_cents=pricing.session_price_cents,
                external_reference=None,
                checkout_metadata=window_metadata,
                description=f"Single session with {psychologist.display_name}",
            )
            customer_id = StripeAdapter.get_or_create_customer(
                client.email,
                metadata={"supabase_user_id": str(client.id)},
                idempotency_key=IdempotencyKeyGenerator.generate("create_customer", client.id),
            )
            intent = StripeAdapter.create_payment_intent(
                CreatePaymentIntentParams(
                    amount_cents=payment.total_amount_cents,
                    currency=payment.currency,
                    idempotency_key=IdempotencyKeyGenerator.generate("create_intent", payment.id),
                    customer_id=customer_id,
                    metadata={
                        "payment_id": str(payment.id),
                        "payment_type": PaymentKind.SINGLE_SESSION,
                        "supabase_user_id": str(client.id),
                        "psychologist_id": str(psychologist.id),
                        "base_amount": str(payment.base_amount_cents),
                        "platform_fee": str(payment.platform_fee_cents),
                        **window_metadata,
                    },
                )
            )
            payment.external_reference = intent.id
            payment.save(update_fields=["external_reference", "updated_at"])

        logger.info(
            "Single session checkout started",
            extra={
                "payment_id": str(payment.id),
                "payment_intent_id": intent.id,
                "psychologist_id": str(psychologist.id),
                "total_amount_cents": payment.total_amount_cents,
            },
        )
        return CheckoutSession(payment=payment, client_secret=intent.client_secret)

    @classmethod
    def start_package(
        cls,
        *,
        client,
        psychologist_id: uuid.UUID,
        package_kind: str,
        appointment_window: tuple[datetime, datetime] | None = None,
    ) -> CheckoutSession:
        """
        Start a monthly package subscription.

        The period price is the discounted package price plus the platform
        fee. The subscription carries the metadata its invoice events are
        classified by. The pending payment is keyed by the first invoice's
        charge.

        Raises:
            ValidationError: Unknown package kind, or nothing to charge
            NotFoundError: Unknown psychologist or no pricing
            StripeError: Stripe rejected or could not take the request;
                no payment is left behind
        """
        psychologist = cls._bookable_psychologist(psychologist_id)
        quote = PricingCatalog.package_quote(psychologist.id, package_kind)
        cls._require_chargeable(quote.base_amount_cents, psychologist.id)
        package = PackageKind(package_kind)
        window_metadata = cls._window_metadata(appointment_window)

        with cls.atomic():
            payment = PaymentService.create_pending_payment(
                payer=client,
                provider=psychologist,
                kind=package_kind,
                base_amount_cents=quote.base_amount_cents,
                external_reference=None,
                checkout_metadata=window_metadata,
                description=f"{package.label} with {psychologist.display_name}",
            )
            customer_id = StripeAdapter.get_or_create_customer(
                client.email,
                metadata={"supabase_user_id": str(client.id)},
                idempotency_key=IdempotencyKeyGenerator.generate("create_customer", client.id),
            )
            result = StripeAdapter.create_subscription(
                CreateSubscriptionParams(
                    customer_id=customer_id,
                    amount_cents=payment.total_amount_cents,
                    currency=payment.currency,
                    product_name=f"Package of {package.label}, monthly",
                    idempotency_key=IdempotencyKeyGenerator.generate(
                        "create_subscription", payment.id
                    ),
                    metadata={
                        "payment_id": str(payment.id),
                        "supabase_user_id": str(client.id),
                        "psychologist_id": str(psychologist.id),
                        "package_type": package_kind,
                        "session_price": str(quote.session_price_cents),
                        "discount_percentage": str(quote.discount_percent),
                        "base_amount": str(payment.base_amount_cents),
                        "platform_fee": str(payment.platform_fee_cents),
                        "platform_fee_rate": str(payment.fee_rate),
                    },
                )
            )
            payment.external_reference = result.payment_reference
            payment.checkout_metadata = {
                **window_metadata,
                "subscription_reference": result.id,
            }
            payment.save(update_fields=["external_reference", "checkout_metadata", "updated_at"])

        logger.info(
            "Package checkout started",
            extra={
                "payment_id": str(payment.id),
                "subscription_reference": result.id,
                "payment_reference": result.payment_reference,
                "package_kind": package_kind,
                "total_amount_cents": payment.total_amount_cents,
            },
        )
        return CheckoutSession(
            payment=payment,
            client_secret=result.client_secret,
            subscription_reference=result.id,
        )

    @staticmethod
    def subscriptions_for(client) -> QuerySet[Subscription]:
        """The client's subscriptions, latest period first."""
        return (
            Subscription.objects.filter(client=client)
            .select_related("provider")
            .order_by("-current_period_end")
        )
