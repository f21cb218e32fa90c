"""
Pytest fixtures for billing tests.

Usage:
    def test_recognize(completed_single_payment):
        payment, entry, appointment = completed_single_payment
        ...
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from rest_framework.test import APIClient

from accounts.tests.factories import UserFactory
from billing.adapters import PaymentIntentResult, StripeAdapter, SubscriptionCheckoutResult
from billing.tests.factories import PlatformWalletFactory
from practice.tests.factories import PsychologistFactory


# =============================================================================
# Parties
# =============================================================================


@pytest.fixture
def client_user(db):
    """A client account."""
    return UserFactory()


@pytest.fixture
def psychologist(db):
    """A psychologist with pricing (800.00 per session)."""
    return PsychologistFactory()


@pytest.fixture
def platform_wallet(db):
    """The single platform wallet."""
    return PlatformWalletFactory()


@pytest.fixture
def api_client():
    return APIClient()


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def scheduler_renewal_mode(settings):
    """Make the batch scheduler the authoritative renewal path."""
    settings.SUBSCRIPTION_RENEWAL_MODE = "scheduler"
    return settings


@pytest.fixture
def provider_renewal_mode(settings):
    """Make Stripe's recurring invoices the authoritative renewal path."""
    settings.SUBSCRIPTION_RENEWAL_MODE = "provider"
    return settings


# =============================================================================
# Mock Redis Fixture (for lock tests)
# =============================================================================


@pytest.fixture
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Returns a MagicMock configured so that locks are free.
    """
    mock_client = MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1

    mocker.patch("billing.locks.get_redis_connection", return_value=mock_client)

    return mock_client


# =============================================================================
# Stripe Checkout Mocks
# =============================================================================


@pytest.fixture
def stripe_checkout(mocker):
    """
    Patch the Stripe calls checkout makes.

    Returns a namespace of the three mocks. Intents come back as
    ``pi_checkout_1``; subscriptions as ``sub_checkout_1`` whose first
    invoice is charged by ``pi_first_1``.
    """
    customer = mocker.patch.object(
        StripeAdapter, "get_or_create_customer", return_value="cus_checkout_1"
    )
    intent = mocker.patch.object(
        StripeAdapter,
        "create_payment_intent",
        return_value=PaymentIntentResult(
            id="pi_checkout_1",
            status="requires_payment_method",
            amount_cents=84000,
            currency="mxn",
            client_secret="pi_checkout_1_secret",
        ),
    )
    subscription = mocker.patch.object(
        StripeAdapter,
        "create_subscription",
        return_value=SubscriptionCheckoutResult(
            id="sub_checkout_1",
            status="incomplete",
            invoice_id="in_first_1",
            payment_reference="pi_first_1",
            client_secret="pi_first_1_secret",
        ),
    )
    return SimpleNamespace(customer=customer, intent=intent, subscription=subscription)
