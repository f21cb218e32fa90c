"""
Pytest fixtures for Stripe adapter tests.

Sections:
    - Mock Stripe Objects
    - Error Fixtures
    - Mock Stripe Client Fixtures
    - Webhook Signing
"""

import hashlib
import hmac
import time
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

WEBHOOK_SECRET = "whsec_test_secret"


# =============================================================================
# Mock Stripe Objects
# =============================================================================


@pytest.fixture
def mock_subscription():
    """Create a mock Subscription response."""

    def _create(
        id: str = "sub_test123",
        status: str = "active",
        metadata: dict | None = None,
        current_period_start: int | None = 1767225600,
        current_period_end: int | None = 1769904000,
    ) -> SimpleNamespace:
        return SimpleNamespace(
            id=id,
            status=status,
            metadata=metadata if metadata is not None else {"package_type": "package_4"},
            current_period_start=current_period_start,
            current_period_end=current_period_end,
        )

    return _create


@pytest.fixture
def mock_payment_intent():
    """Create a mock PaymentIntent response."""

    def _create(
        id: str = "pi_test123",
        status: str = "requires_payment_method",
        amount: int = 84000,
        metadata: dict | None = None,
    ) -> SimpleNamespace:
        return SimpleNamespace(
            id=id,
            status=status,
            amount=amount,
            currency="mxn",
            client_secret=f"{id}_secret_abc",
            metadata=metadata or {},
        )

    return _create


@pytest.fixture
def mock_created_subscription():
    """A subscription from create, with its first invoice expanded."""

    def _create(payment_intent="pi_first", invoice_id: str = "in_first") -> SimpleNamespace:
        if isinstance(payment_intent, str):
            payment_intent = SimpleNamespace(
                id=payment_intent, client_secret=f"{payment_intent}_secret_abc"
            )
        return SimpleNamespace(
            id="sub_new123",
            status="incomplete",
            latest_invoice=SimpleNamespace(id=invoice_id, payment_intent=payment_intent),
        )

    return _create


    return _create


# =============================================================================
# Error Fixtures
# =============================================================================


@pytest.fixture
def invalid_request_error():
    return stripe.InvalidRequestError(
        message="No such subscription: 'sub_missing'",
        param="id",
        code="resource_missing",
    )


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    return stripe.APIConnectionError(message="Could not connect to Stripe.")


@pytest.fixture
def api_error():
    return stripe.APIError(message="Something went wrong on Stripe's end.")


@pytest.fixture
def authentication_error():
    return stripe.AuthenticationError(message="Invalid API Key provided.")


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture
def mock_stripe_http_client():
    """Keep the adapter from building a real HTTP client."""
    with patch("stripe.RequestsClient") as mock:
        yield mock


@pytest.fixture
def mock_stripe_subscription(
    mock_subscription, mock_created_subscription, mock_stripe_http_client
):
    """Mock stripe.Subscription API."""
    with patch("stripe.Subscription") as mock:
        mock.retrieve.return_value = mock_subscription()
        mock.cancel.return_value = mock_subscription(status="canceled")
        mock.create.return_value = mock_created_subscription()
        yield mock


@pytest.fixture
def mock_stripe_customer(mock_stripe_http_client):
    """Mock stripe.Customer API with no existing customer."""
    with patch("stripe.Customer") as mock:
        mock.list.return_value = SimpleNamespace(data=[])
        mock.create.return_value = SimpleNamespace(id="cus_new123")
        yield mock


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent, mock_stripe_http_client):
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = mock_payment_intent()
        yield mock


@pytest.fixture
def mock_stripe_price(mock_stripe_http_client):
    with patch("stripe.Price") as mock:
        mock.create.return_value = SimpleNamespace(id="price_new123")
        yield mock


# =============================================================================
# Webhook Signing
# =============================================================================


@pytest.fixture
def webhook_settings(settings):
    settings.STRIPE_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS = 300
    return settings


@pytest.fixture
def sign_payload():
    """Build a Stripe-Signature header the way Stripe does."""

    def _sign(payload: bytes, timestamp: int | None = None, secret: str = WEBHOOK_SECRET) -> str:
        timestamp = int(time.time()) if timestamp is None else timestamp
        signed = f"{timestamp}.{payload.decode()}".encode()
        digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign
