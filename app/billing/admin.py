"""
Billing admin configuration.

This file imports admin configurations from the wallet submodule and
registers billing domain models with the Django admin. Ledger state is
changed through the service layer, not admin.
"""

from django.contrib import admin

from billing.models import (
    ClientCredit,
    DeferredRevenueEntry,
    Invoice,
    Payment,
    RevenueRecognition,
    Subscription,
    SubscriptionHistory,
    WebhookEvent,
)
from billing.state_machines import WebhookEventStatus
from billing.wallet.admin import WalletAdmin, WalletTransactionAdmin

__all__ = [
    "ClientCreditAdmin",
    "DeferredRevenueEntryAdmin",
    "InvoiceAdmin",
    "PaymentAdmin",
    "SubscriptionAdmin",
    "WalletAdmin",
    "WalletTransactionAdmin",
    "WebhookEventAdmin",
]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    State changes come from webhooks only.
    """

    list_display = [
        "id",
        "payer",
        "provider",
        "kind",
        "amount_display",
        "status",
        "created_at",
    ]
    list_filter = ["status", "kind", "currency", "created_at"]
    search_fields = ["id", "external_reference", "payer__email"]
    readonly_fields = [
        "id",
        "payer",
        "provider",
        "appointment",
        "subscription",
        "kind",
        "base_amount_cents",
        "platform_fee_cents",
        "fee_rate",
        "total_amount_cents",
        "currency",
        "status",
        "external_reference",
        "checkout_metadata",
        "completed_at",
        "failed_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def amount_display(self, obj: Payment) -> str:
        return f"${obj.total_amount_cents / 100:.2f} {obj.currency.upper()}"

    amount_display.short_description = "Total"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


class SubscriptionHistoryInline(admin.TabularInline):
    model = SubscriptionHistory
    extra = 0
    can_delete = False
    readonly_fields = [
        "event_type",
        "sessions_added",
        "rollover_amount",
        "amount_charged_cents",
        "notes",
        "created_at",
    ]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "client",
        "provider",
        "package_kind",
        "status",
        "sessions_used",
        "sessions_total",
        "next_billing_date",
    ]
    list_filter = ["status", "package_kind", "auto_renew"]
    search_fields = ["id", "external_reference", "client__email"]
    readonly_fields = [
        "id",
        "status",
        "sessions_total",
        "sessions_used",
        "sessions_remaining",
        "rollover_sessions",
        "current_period_start",
        "current_period_end",
        "next_billing_date",
        "external_reference",
        "last_invoice_reference",
        "version",
        "created_at",
        "updated_at",
    ]
    inlines = [SubscriptionHistoryInline]
    ordering = ["-created_at"]


@admin.register(DeferredRevenueEntry)
class DeferredRevenueEntryAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "provider",
        "payment",
        "total_amount_cents",
        "recognized_amount_cents",
        "sessions_recognized",
        "sessions_total",
    ]
    search_fields = ["id", "payment__external_reference"]
    readonly_fields = [field.name for field in DeferredRevenueEntry._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(RevenueRecognition)
class RevenueRecognitionAdmin(admin.ModelAdmin):
    list_display = ["id", "appointment", "entry", "amount_cents", "created_at"]
    readonly_fields = [field.name for field in RevenueRecognition._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(ClientCredit)
class ClientCreditAdmin(admin.ModelAdmin):
    list_display = ["id", "client", "amount_cents", "status", "expires_at"]
    list_filter = ["status"]
    search_fields = ["id", "client__email", "source"]
    readonly_fields = ["id", "status", "used_at", "expired_at", "created_at", "updated_at"]


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ["invoice_number", "client", "provider", "amount_cents", "created_at"]
    search_fields = ["invoice_number", "client__email"]
    readonly_fields = [field.name for field in Invoice._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status and a manual
    requeue action for failed events.
    """

    list_display = [
        "id",
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type", "payload_digest"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "stripe_event_id",
        "event_type",
        "payload",
        "payload_digest",
        "processed_at",
    ]
    actions = ["requeue"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    @admin.action(description="Requeue selected failed events")
    def requeue(self, request, queryset):
        from billing.tasks import process_webhook_event

        failed = queryset.filter(status=WebhookEventStatus.FAILED)
        for event in failed:
            process_webhook_event.delay(str(event.id))
        self.message_user(request, f"Requeued {failed.count()} events.")

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        return False
