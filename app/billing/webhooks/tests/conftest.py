"""
Pytest fixtures for webhook tests.

Provides WebhookEvent objects, the pending checkout payments the events
refer to and a mock for the Stripe subscription lookup. Payload builders
live in payloads.py.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from billing.state_machines import PaymentKind, WebhookEventStatus
from billing.tests.factories import PaymentFactory, WebhookEventFactory
from billing.webhooks.tests.payloads import build_event
from practice.tests.factories import PsychologistFactory


# =============================================================================
# Parties & Checkout Fixtures
# =============================================================================


@pytest.fixture
def psychologist(db):
    return PsychologistFactory()


@pytest.fixture
def appointment_window():
    start = (timezone.now() + timedelta(days=3)).replace(microsecond=0)
    return start, start + timedelta(minutes=50)


@pytest.fixture
def single_checkout(db, psychologist, appointment_window):
    """Pending single-session payment with a booked time window."""
    start, end = appointment_window
    return PaymentFactory(
        provider=psychologist,
        external_reference="pi_single_123",
        checkout_metadata={
            "appointment_start_time": start.isoformat(),
            "appointment_end_time": end.isoformat(),
        },
    )


@pytest.fixture
def package_checkout(db, psychologist, appointment_window):
    """Pending package_4 payment (288000 + 14400 fee) with a first session booked."""
    start, end = appointment_window
    return PaymentFactory(
        provider=psychologist,
        kind=PaymentKind.PACKAGE_4,
        base_amount_cents=288000,
        platform_fee_cents=14400,
        external_reference="pi_package_123",
        checkout_metadata={
            "appointment_start_time": start.isoformat(),
            "appointment_end_time": end.isoformat(),
        },
    )


# =============================================================================
# WebhookEvent Fixtures
# =============================================================================


@pytest.fixture
def make_webhook_event(db):
    """Store a WebhookEvent for a payload, as the view would."""

    def _make(payload: dict, **kwargs) -> object:
        return WebhookEventFactory(
            stripe_event_id=payload["id"],
            event_type=payload["type"],
            payload=payload,
            **kwargs,
        )

    return _make


@pytest.fixture
def processed_webhook_event(make_webhook_event):
    payload = build_event("payment_intent.succeeded", {"id": "pi_done"}, event_id="evt_done")
    return make_webhook_event(payload, status=WebhookEventStatus.PROCESSED)


# =============================================================================
# Stripe Mocks
# =============================================================================


@pytest.fixture
def mock_retrieve_subscription(mocker):
    """Patch the Stripe subscription lookup used for non-inlined metadata."""
    return mocker.patch("billing.webhooks.commands.StripeAdapter.retrieve_subscription")
