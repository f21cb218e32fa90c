"""
Billing services.

Services:
    CheckoutService - Checkout initiation with Stripe
    PaymentService - Checkout records, platform fees, invoices
    SubscriptionService - Subscription creation, counters, status changes
    DeferredRevenueService / RevenueRecognitionService - Revenue ledger
    RenewalService - Scheduler-driven renewals
    CreditService - Credit expiry
    AccountDeletionService - Billing reconciliation on account deletion
"""

from billing.services.account_deletion import AccountDeletionReport, AccountDeletionService
from billing.services.checkout import CheckoutService, CheckoutSession
from billing.services.credits import CreditService
from billing.services.payments import PaymentService
from billing.services.renewal import RenewalService
from billing.services.revenue import (
    DeferredRevenueService,
    RecognitionResult,
    RecognizeRevenue,
    RevenueRecognitionService,
    record_session_outcome,
)
from billing.services.rollover import calculate_rollover, next_period_allocation
from billing.services.subscriptions import SubscriptionService

__all__ = [
    "AccountDeletionReport",
    "AccountDeletionService",
    "CheckoutService",
    "CheckoutSession",
    "CreditService",
    "DeferredRevenueService",
    "PaymentService",
    "RecognitionResult",
    "RecognizeRevenue",
    "RenewalService",
    "RevenueRecognitionService",
    "SubscriptionService",
    "calculate_rollover",
    "next_period_allocation",
    "record_session_outcome",
]
