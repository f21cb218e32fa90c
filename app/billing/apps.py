"""
Billing app configuration.

This app is the billing and revenue-recognition engine:
- Payment records and invoices
- Subscription ledger with rollover
- Deferred revenue and session-by-session recognition
- Platform and provider wallets fed by an append-only transaction ledger
- Stripe webhook processing and the renewal / credit-expiry schedulers
"""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"

    def ready(self):
        """Register webhook handlers."""
        from billing.webhooks import handlers  # noqa: F401
