"""
State and category enums for billing models.
"""

from billing.state_machines.states import (
    CreditStatus,
    HandlerOutcome,
    PackageKind,
    PaymentKind,
    PaymentStatus,
    RenewalMode,
    SubscriptionEventType,
    SubscriptionStatus,
    TransactionCategory,
    WalletType,
    WebhookEventStatus,
)

__all__ = [
    "CreditStatus",
    "HandlerOutcome",
    "PackageKind",
    "PaymentKind",
    "PaymentStatus",
    "RenewalMode",
    "SubscriptionEventType",
    "SubscriptionStatus",
    "TransactionCategory",
    "WalletType",
    "WebhookEventStatus",
]
