"""
Django admin configuration for wallet models.

Wallet balances are only changed by postings, so both models are
read-only here. WalletTransaction rows are immutable; corrections are
new postings.
"""

from django.contrib import admin

from billing.wallet.models import Wallet, WalletTransaction


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    """
    Admin configuration for Wallet.

    Balance is the cached value; WalletService.reconcile checks it
    against the transaction log.
    """

    list_display = [
        "id",
        "wallet_type",
        "provider",
        "balance_display",
        "transaction_count",
        "is_active",
        "updated_at",
    ]
    list_filter = ["wallet_type", "is_active", "currency"]
    search_fields = ["id", "provider__display_name", "provider__user__email"]
    readonly_fields = [
        "id",
        "wallet_type",
        "provider",
        "balance_cents",
        "transaction_count",
        "currency",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def balance_display(self, obj: Wallet) -> str:
        return f"${obj.balance_cents / 100:.2f} {obj.currency.upper()}"

    balance_display.short_description = "Balance"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WalletTransaction)
class WalletTransactionAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "created_at",
        "wallet",
        "sequence",
        "category",
        "amount_cents",
        "balance_after_cents",
    ]
    list_filter = ["wallet_type", "category", "created_at"]
    search_fields = ["id", "idempotency_key", "description", "payment__id"]
    readonly_fields = [
        "id",
        "created_at",
        "wallet",
        "wallet_type",
        "sequence",
        "amount_cents",
        "balance_before_cents",
        "balance_after_cents",
        "currency",
        "category",
        "payment",
        "provider",
        "description",
        "idempotency_key",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
