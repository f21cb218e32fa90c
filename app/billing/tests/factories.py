"""
Factory Boy factories for billing test data.

Usage:
    from billing.tests.factories import (
        ClientCreditFactory,
        PaymentFactory,
        SubscriptionFactory,
        WebhookEventFactory,
    )

    # Pending single-session checkout for 800.00 + 5% fee
    payment = PaymentFactory()

    # Active package_4 subscription with two sessions used
    subscription = SubscriptionFactory(sessions_used=2, sessions_remaining=2)
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import factory
from django.utils import timezone

from accounts.tests.factories import UserFactory
from billing.models import (
    ClientCredit,
    DeferredRevenueEntry,
    Payment,
    Subscription,
    WebhookEvent,
)
from billing.state_machines import PackageKind, PaymentKind, WalletType
from billing.wallet.models import Wallet
from practice.tests.factories import PsychologistFactory


class PaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Payment instances.

    Default is a PENDING single-session payment of 800.00 + 40.00 fee.
    Status is managed by FSM; pass ``status=`` only for initial creation.
    """

    class Meta:
        model = Payment

    payer = factory.SubFactory(UserFactory)
    provider = factory.SubFactory(PsychologistFactory)
    kind = PaymentKind.SINGLE_SESSION
    base_amount_cents = 80000
    fee_rate = Decimal("0.0500")
    platform_fee_cents = 4000
    total_amount_cents = factory.LazyAttribute(
        lambda o: o.base_amount_cents + o.platform_fee_cents
    )
    currency = "mxn"
    external_reference = factory.LazyFunction(lambda: f"pi_test_{uuid.uuid4().hex[:16]}")
    checkout_metadata = factory.LazyFunction(dict)


class SubscriptionFactory(factory.django.DjangoModelFactory):
    """
    Factory for an ACTIVE package_4 subscription at 800.00 per session
    with a 10% discount, mid-period.
    """

    class Meta:
        model = Subscription

    client = factory.SubFactory(UserFactory)
    provider = factory.SubFactory(PsychologistFactory)
    package_kind = PackageKind.PACKAGE_4
    base_sessions = 4
    session_price_cents = 80000
    discount_percent = Decimal("10")
    base_amount_cents = 288000
    currency = "mxn"
    sessions_total = factory.LazyAttribute(lambda o: o.base_sessions)
    sessions_used = 0
    sessions_remaining = factory.LazyAttribute(lambda o: o.sessions_total - o.sessions_used)
    current_period_start = factory.LazyFunction(lambda: timezone.now() - timedelta(days=10))
    current_period_end = factory.LazyAttribute(
        lambda o: o.current_period_start + timedelta(days=30)
    )
    next_billing_date = factory.LazyAttribute(lambda o: o.current_period_end.date())
    external_reference = factory.LazyFunction(lambda: f"sub_test_{uuid.uuid4().hex[:16]}")


class DeferredRevenueEntryFactory(factory.django.DjangoModelFactory):
    """Untouched entry covering the whole base amount of its payment."""

    class Meta:
        model = DeferredRevenueEntry

    payment = factory.SubFactory(PaymentFactory)
    provider = factory.LazyAttribute(lambda o: o.payment.provider)
    total_amount_cents = factory.LazyAttribute(lambda o: o.payment.base_amount_cents)
    deferred_amount_cents = factory.LazyAttribute(lambda o: o.total_amount_cents)
    recognized_amount_cents = 0
    sessions_total = 1
    sessions_recognized = 0
    price_per_session_cents = factory.LazyAttribute(
        lambda o: round(o.total_amount_cents / o.sessions_total)
    )


class PlatformWalletFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Wallet
        django_get_or_create = ("wallet_type",)

    wallet_type = WalletType.PLATFORM
    currency = "mxn"


class ProviderWalletFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Wallet

    wallet_type = WalletType.PROVIDER
    provider = factory.SubFactory(PsychologistFactory)
    currency = "mxn"


class ClientCreditFactory(factory.django.DjangoModelFactory):
    """Available 200.00 credit funded by the platform wallet, expiring in 30 days."""

    class Meta:
        model = ClientCredit

    client = factory.SubFactory(UserFactory)
    wallet = factory.SubFactory(PlatformWalletFactory)
    amount_cents = 20000
    currency = "mxn"
    source = "promotion"
    expires_at = factory.LazyFunction(lambda: timezone.now() + timedelta(days=30))


class WebhookEventFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating WebhookEvent instances.

    Default creates a PENDING payment_intent.succeeded event.
    """

    class Meta:
        model = WebhookEvent

    stripe_event_id = factory.Sequence(lambda n: f"evt_test_{n}_{uuid.uuid4().hex[:8]}")
    event_type = "payment_intent.succeeded"
    payload = factory.LazyAttribute(
        lambda o: {
            "id": o.stripe_event_id,
            "type": o.event_type,
            "data": {"object": {"id": f"pi_test_{uuid.uuid4().hex[:8]}"}},
        }
    )
    payload_digest = factory.LazyFunction(lambda: uuid.uuid4().hex * 2)
