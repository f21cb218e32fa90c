"""
Billing models.

Models:
    Payment - One attempted charge
    Subscription / SubscriptionHistory - Recurring packages and their audit trail
    DeferredRevenueEntry / RevenueRecognition - Unearned revenue and recognition markers
    Wallet / WalletTransaction - Balances and their append-only ledger
    ClientCredit - Promotional and refund credits
    Invoice - Client-facing record of a completed payment
    WebhookEvent - Verified Stripe events
"""

from billing.wallet.models import Wallet, WalletTransaction

from .credit import ClientCredit
from .invoice import Invoice
from .payment import Payment
from .revenue import DeferredRevenueEntry, RevenueRecognition
from .subscription import Subscription, SubscriptionHistory
from .webhook_event import WebhookEvent

__all__ = [
    "ClientCredit",
    "DeferredRevenueEntry",
    "Invoice",
    "Payment",
    "RevenueRecognition",
    "Subscription",
    "SubscriptionHistory",
    "Wallet",
    "WalletTransaction",
    "WebhookEvent",
]
