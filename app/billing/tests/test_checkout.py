"""
Tests for checkout initiation.

Tests cover:
- Pending payments for single sessions and packages, priced from the catalog
- Metadata handed to Stripe, and the reference the payment is stored under
- Rejections that leave no payment behind
- Checkout followed by the webhook Stripe sends for it
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from billing.exceptions import StripeAPIUnavailableError
from billing.models import Payment, Subscription
from billing.services import CheckoutService
from billing.state_machines import HandlerOutcome, PaymentKind, PaymentStatus
from billing.tests.factories import SubscriptionFactory, WebhookEventFactory
from billing.webhooks.handlers import dispatch_webhook
from billing.webhooks.tests.payloads import build_event, build_invoice
from core.exceptions import NotFoundError, ValidationError
from practice.models import Appointment
from practice.tests.factories import PsychologistFactory


@pytest.fixture
def window():
    start = (timezone.now() + timedelta(days=2)).replace(microsecond=0)
    return start, start + timedelta(minutes=50)


def _dispatch(event_type, obj):
    payload = build_event(event_type, obj)
    return dispatch_webhook(
        WebhookEventFactory(
            stripe_event_id=payload["id"],
            event_type=event_type,
            payload=payload,
        )
    )


# =============================================================================
# Single Session
# =============================================================================


@pytest.mark.django_db
class TestStartSingleSession:
    def test_records_pending_payment(self, client_user, psychologist, stripe_checkout, window):
        checkout = CheckoutService.start_single_session(
            client=client_user,
            psychologist_id=psychologist.id,
            appointment_window=window,
        )

        payment = Payment.objects.get(pk=checkout.payment.pk)
        assert payment.status == PaymentStatus.PENDING
        assert payment.kind == PaymentKind.SINGLE_SESSION
        assert payment.external_reference == "pi_checkout_1"
        assert payment.base_amount_cents == 80000
        assert payment.platform_fee_cents == 4000
        assert payment.total_amount_cents == 84000
        assert payment.checkout_metadata["appointment_start_time"] == window[0].isoformat()
        assert checkout.client_secret == "pi_checkout_1_secret"
        assert checkout.subscription_reference is None

    def test_intent_carries_total_and_metadata(
        self, client_user, psychologist, stripe_checkout
    ):
        checkout = CheckoutService.start_single_session(
            client=client_user, psychologist_id=psychologist.id
        )

        params = stripe_checkout.intent.call_args.args[0]
        assert params.amount_cents == 84000
        assert params.customer_id == "cus_checkout_1"
        assert params.metadata["payment_id"] == str(checkout.payment.id)
        assert params.metadata["supabase_user_id"] == str(client_user.id)
        assert params.metadata["psychologist_id"] == str(psychologist.id)
        assert str(checkout.payment.id) in params.idempotency_key
        stripe_checkout.customer.assert_called_once()
        assert stripe_checkout.customer.call_args.args[0] == client_user.email

    def test_without_window(self, client_user, psychologist, stripe_checkout):
        checkout = CheckoutService.start_single_session(
            client=client_user, psychologist_id=psychologist.id
        )

        assert checkout.payment.checkout_metadata == {}

    def test_unknown_psychologist(self, client_user, stripe_checkout):
        inactive = PsychologistFactory(is_active=False)

        with pytest.raises(NotFoundError) as exc_info:
            CheckoutService.start_single_session(
                client=client_user, psychologist_id=inactive.id
            )

        assert exc_info.value.error_code == "PSYCHOLOGIST_NOT_FOUND"
        assert not Payment.objects.exists()
        stripe_checkout.intent.assert_not_called()

    def test_missing_pricing(self, client_user, stripe_checkout):
        psychologist = PsychologistFactory(pricing=False)

        with pytest.raises(NotFoundError) as exc_info:
            CheckoutService.start_single_session(
                client=client_user, psychologist_id=psychologist.id
            )

        assert exc_info.value.error_code == "PRICING_NOT_FOUND"

    def test_zero_price_rejected(self, client_user, psychologist, stripe_checkout):
        psychologist.pricing.session_price_cents = 0
        psychologist.pricing.save()

        with pytest.raises(ValidationError) as exc_info:
            CheckoutService.start_single_session(
                client=client_user, psychologist_id=psychologist.id
            )

        assert exc_info.value.error_code == "INVALID_PRICE"
        stripe_checkout.intent.assert_not_called()

    def test_stripe_failure_leaves_no_payment(self, client_user, psychologist, stripe_checkout):
        stripe_checkout.intent.side_effect = StripeAPIUnavailableError("timeout")

        with pytest.raises(StripeAPIUnavailableError):
            CheckoutService.start_single_session(
                client=client_user, psychologist_id=psychologist.id
            )

        assert not Payment.objects.exists()


# =============================================================================
# Packages
# =============================================================================


@pytest.mark.django_db
class TestStartPackage:
    def test_package_4(self, client_user, psychologist, stripe_checkout):
        checkout = CheckoutService.start_package(
            client=client_user,
            psychologist_id=psychologist.id,
            package_kind="package_4",
        )

        payment = Payment.objects.get(pk=checkout.payment.pk)
        assert payment.kind == PaymentKind.PACKAGE_4
        assert payment.status == PaymentStatus.PENDING
        assert payment.base_amount_cents == 288000
        assert payment.platform_fee_cents == 14400
        assert payment.total_amount_cents == 302400
        assert payment.external_reference == "pi_first_1"
        assert payment.checkout_metadata["subscription_reference"] == "sub_checkout_1"
        assert checkout.subscription_reference == "sub_checkout_1"
        assert checkout.client_secret == "pi_first_1_secret"

    def test_package_8_uses_its_discount(self, client_user, psychologist, stripe_checkout):
        checkout = CheckoutService.start_package(
            client=client_user,
            psychologist_id=psychologist.id,
            package_kind="package_8",
        )

        assert checkout.payment.base_amount_cents == 512000
        assert checkout.payment.platform_fee_cents == 25600

    def test_subscription_metadata(self, client_user, psychologist, stripe_checkout):
        checkout = CheckoutService.start_package(
            client=client_user,
            psychologist_id=psychologist.id,
            package_kind="package_4",
        )

        params = stripe_checkout.subscription.call_args.args[0]
        assert params.amount_cents == 302400
        assert params.customer_id == "cus_checkout_1"
        assert params.metadata["supabase_user_id"] == str(client_user.id)
        assert params.metadata["psychologist_id"] == str(psychologist.id)
        assert params.metadata["package_type"] == "package_4"
        assert params.metadata["session_price"] == "80000"
        assert Decimal(params.metadata["discount_percentage"]) == Decimal("10")
        assert params.metadata["base_amount"] == "288000"
        assert params.metadata["platform_fee"] == "14400"
        assert params.metadata["payment_id"] == str(checkout.payment.id)

    def test_unknown_package(self, client_user, psychologist, stripe_checkout):
        with pytest.raises(ValidationError):
            CheckoutService.start_package(
                client=client_user,
                psychologist_id=psychologist.id,
                package_kind="package_12",
            )

        assert not Payment.objects.exists()
        stripe_checkout.subscription.assert_not_called()

    def test_stripe_failure_leaves_no_payment(self, client_user, psychologist, stripe_checkout):
        stripe_checkout.subscription.side_effect = StripeAPIUnavailableError("timeout")

        with pytest.raises(StripeAPIUnavailableError):
            CheckoutService.start_package(
                client=client_user,
                psychologist_id=psychologist.id,
                package_kind="package_4",
            )

        assert not Payment.objects.exists()


@pytest.mark.django_db
class TestSubscriptionsFor:
    def test_only_own_subscriptions(self, client_user):
        own = SubscriptionFactory(client=client_user)
        SubscriptionFactory()

        assert list(CheckoutService.subscriptions_for(client_user)) == [own]


# =============================================================================
# Checkout Then Webhook
# =============================================================================


@pytest.mark.e2e
@pytest.mark.django_db
class TestCheckoutThenWebhook:
    def test_single_session_completes(
        self, client_user, psychologist, platform_wallet, stripe_checkout, window
    ):
        checkout = CheckoutService.start_single_session(
            client=client_user,
            psychologist_id=psychologist.id,
            appointment_window=window,
        )

        result = _dispatch("payment_intent.succeeded", {"id": "pi_checkout_1"})

        assert result.data == HandlerOutcome.APPLIED
        payment = Payment.objects.get(pk=checkout.payment.pk)
        assert payment.status == PaymentStatus.COMPLETED
        assert (payment.appointment.start_time, payment.appointment.end_time) == window

    def test_package_activates_from_its_own_metadata(
        self, client_user, psychologist, platform_wallet, stripe_checkout, window
    ):
        checkout = CheckoutService.start_package(
            client=client_user,
            psychologist_id=psychologist.id,
            package_kind="package_4",
            appointment_window=window,
        )
        metadata = stripe_checkout.subscription.call_args.args[0].metadata
        invoice = build_invoice(
            invoice_id="in_first_1",
            subscription_id="sub_checkout_1",
            billing_reason="subscription_create",
            payment_intent="pi_first_1",
            metadata=metadata,
        )

        result = _dispatch("invoice.paid", invoice)

        assert result.data == HandlerOutcome.APPLIED
        assert Payment.objects.get(pk=checkout.payment.pk).status == PaymentStatus.COMPLETED
        subscription = Subscription.objects.get(external_reference="sub_checkout_1")
        assert subscription.client_id == client_user.id
        assert subscription.session_price_cents == 80000
        assert subscription.discount_percent == Decimal("10")
        assert subscription.sessions_used == 1
        assert Appointment.objects.filter(subscription=subscription).count() == 1
