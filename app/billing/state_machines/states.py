"""
State enums for billing models.

These are Django TextChoices for database storage and admin integration.
Status fields that only move forward are driven by django-fsm transitions.

State Machines Overview:

Payment:
    pending → completed
    pending → failed → completed (retried intent)

Subscription:
    active → payment_failed → active (retry succeeded)
    active / payment_failed → expired (provider deleted it)
    active / payment_failed → cancelled
    expired and cancelled are terminal

ClientCredit:
    available → used
    available → expired

WebhookEvent:
    pending → processing → processed
    processing → failed → processing (retry)
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    States for the Payment lifecycle.

    A payment is created pending at checkout initiation and finalized
    exactly once by the webhook processor.
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class PaymentKind(models.TextChoices):
    """What a payment buys."""

    SINGLE_SESSION = "single_session", "Single Session"
    PACKAGE_4 = "package_4", "Package (4 sessions)"
    PACKAGE_8 = "package_8", "Package (8 sessions)"
    SUBSCRIPTION_RENEWAL = "subscription_renewal", "Subscription Renewal"


class PackageKind(models.TextChoices):
    """
    Recurring session packages.

    The value doubles as the PaymentKind of the first charge.
    """

    PACKAGE_4 = "package_4", "4 sessions"
    PACKAGE_8 = "package_8", "8 sessions"

    @property
    def base_sessions(self) -> int:
        return PACKAGE_BASE_SESSIONS[self.value]


PACKAGE_BASE_SESSIONS = {
    PackageKind.PACKAGE_4.value: 4,
    PackageKind.PACKAGE_8.value: 8,
}


class SubscriptionStatus(models.TextChoices):
    """
    States for the Subscription lifecycle.

    Precedence for out-of-order events: ACTIVE beats PAYMENT_FAILED.
    EXPIRED and CANCELLED are terminal; no later event moves them.
    """

    ACTIVE = "active", "Active"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    EXPIRED = "expired", "Expired"
    CANCELLED = "cancelled", "Cancelled"


TERMINAL_SUBSCRIPTION_STATUSES = frozenset(
    {SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED}
)


class SubscriptionEventType(models.TextChoices):
    """Event types written to SubscriptionHistory."""

    CREATED = "created", "Created"
    RENEWAL = "renewal", "Renewal"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    EXPIRED = "expired", "Expired"
    CANCELLED = "cancelled", "Cancelled"


class WalletType(models.TextChoices):
    """Owner kind of a wallet."""

    PLATFORM = "platform", "Platform"
    PROVIDER = "provider", "Provider"


class TransactionCategory(models.TextChoices):
    """
    Categories of wallet transactions.

    Values:
        PLATFORM_FEE: Service fee collected on a completed charge
        SESSION_REVENUE: Provider earnings recognized for one session
        CREDIT_EXPIRED: Reversal of an unused client credit
        REFUND: Money returned to a client
        LATE_CANCELLATION: Fee retained on a late cancellation
        ACCOUNT_DELETED: Settlement of a deleted account's balance
    """

    PLATFORM_FEE = "platform_fee", "Platform Fee"
    SESSION_REVENUE = "session_revenue", "Session Revenue"
    CREDIT_EXPIRED = "credit_expired", "Credit Expired"
    REFUND = "refund", "Refund"
    LATE_CANCELLATION = "late_cancellation", "Late Cancellation"
    ACCOUNT_DELETED = "account_deleted", "Account Deleted"


class CreditStatus(models.TextChoices):
    """States for promotional / refund credits."""

    AVAILABLE = "available", "Available"
    USED = "used", "Used"
    EXPIRED = "expired", "Expired"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for Stripe webhook events.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PROCESSING → FAILED → PROCESSING (retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class HandlerOutcome(models.TextChoices):
    """
    What a successful webhook handler did.

    Failures are ServiceResult.failure values, not outcomes.
    """

    APPLIED = "applied", "Applied"
    DUPLICATE = "duplicate", "Duplicate (no-op)"
    IGNORED = "ignored", "Ignored"


class RenewalMode(models.TextChoices):
    """Which renewal path is authoritative for a deployment."""

    PROVIDER = "provider", "Provider-native recurring billing"
    SCHEDULER = "scheduler", "Batch renewal scheduler"
