"""
Adapters for external services.

All Stripe API calls go through StripeAdapter.
"""

from billing.adapters.stripe_adapter import (
    CreatePaymentIntentParams,
    CreateSubscriptionParams,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    StripeAdapter,
    SubscriptionCheckoutResult,
    SubscriptionResult,
)

__all__ = [
    "CreatePaymentIntentParams",
    "CreateSubscriptionParams",
    "IdempotencyKeyGenerator",
    "PaymentIntentResult",
    "StripeAdapter",
    "SubscriptionCheckoutResult",
    "SubscriptionResult",
]
