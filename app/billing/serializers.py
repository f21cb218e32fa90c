"""
DRF serializers for the billing app.

This module provides serializers for:
- Session outcome requests and recognition results
- Provider wallet balance and recent transactions
- Checkout requests and the client's subscriptions

Usage:
    serializer = SessionOutcomeSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
"""

from __future__ import annotations

from rest_framework import serializers

from billing.models import Subscription, Wallet, WalletTransaction
from billing.state_machines import HandlerOutcome, PaymentKind
from billing.wallet.types import Money


class SessionOutcomeSerializer(serializers.Serializer):
    """
    Request body for recording a session outcome.

    Fields:
        attended: True for completed, False for no-show. Both recognize
            revenue.
    """

    attended = serializers.BooleanField()


class RecognitionResultSerializer(serializers.Serializer):
    outcome = serializers.ChoiceField(choices=HandlerOutcome.choices, read_only=True)
    appointment_id = serializers.UUIDField(read_only=True)
    amount_cents = serializers.IntegerField(read_only=True)
    entry_id = serializers.UUIDField(read_only=True, allow_null=True)
    wallet_transaction_id = serializers.UUIDField(read_only=True, allow_null=True)


class WalletTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = WalletTransaction
        fields = [
            "id",
            "sequence",
            "category",
            "amount_cents",
            "balance_after_cents",
            "currency",
            "description",
            "created_at",
        ]
        read_only_fields = fields


class WalletSerializer(serializers.ModelSerializer):
    """
    Provider wallet for API responses.

    Fields:
        balance_display: Formatted balance, e.g. "$840.00 MXN"
        recent_transactions: Newest postings first, passed in context
    """

    balance_display = serializers.SerializerMethodField()
    recent_transactions = serializers.SerializerMethodField()

    class Meta:
        model = Wallet
        fields = [
            "id",
            "wallet_type",
            "balance_cents",
            "balance_display",
            "currency",
            "transaction_count",
            "is_active",
            "updated_at",
            "recent_transactions",
        ]
        read_only_fields = fields

    def get_balance_display(self, obj: Wallet) -> str:
        return str(Money(cents=obj.balance_cents, currency=obj.currency))

    def get_recent_transactions(self, obj: Wallet) -> list[dict]:
        transactions = self.context.get("recent_transactions", [])
        return WalletTransactionSerializer(transactions, many=True).data


class CheckoutRequestSerializer(serializers.Serializer):
    """
    Request body for starting a checkout.

    Fields:
        psychologist_id: Psychologist being paid
        payment_type: single_session, package_4 or package_8
        appointment_start_time / appointment_end_time: Optional first
            appointment, booked once the payment succeeds. Both or neither.
    """

    PAYMENT_TYPES = [
        PaymentKind.SINGLE_SESSION,
        PaymentKind.PACKAGE_4,
        PaymentKind.PACKAGE_8,
    ]

    psychologist_id = serializers.UUIDField()
    payment_type = serializers.ChoiceField(choices=PAYMENT_TYPES)
    appointment_start_time = serializers.DateTimeField(required=False)
    appointment_end_time = serializers.DateTimeField(required=False)

    def validate(self, attrs):
        start = attrs.get("appointment_start_time")
        end = attrs.get("appointment_end_time")
        if (start is None) != (end is None):
            raise serializers.ValidationError(
                "appointment_start_time and appointment_end_time go together"
            )
        if start is not None and end <= start:
            raise serializers.ValidationError(
                {"appointment_end_time": "Must be after appointment_start_time"}
            )
        return attrs


class CheckoutResponseSerializer(serializers.Serializer):
    payment_id = serializers.UUIDField(source="payment.id")
    payment_reference = serializers.CharField(source="payment.external_reference")
    client_secret = serializers.CharField(allow_null=True)
    subscription_reference = serializers.CharField(allow_null=True)
    base_amount_cents = serializers.IntegerField(source="payment.base_amount_cents")
    platform_fee_cents = serializers.IntegerField(source="payment.platform_fee_cents")
    total_amount_cents = serializers.IntegerField(source="payment.total_amount_cents")
    currency = serializers.CharField(source="payment.currency")


class SubscriptionSerializer(serializers.ModelSerializer):
    """A client's package subscription with its session counters."""

    psychologist_id = serializers.UUIDField(source="provider_id", read_only=True)
    psychologist_name = serializers.CharField(
        source="provider.display_name", read_only=True, default=None
    )

    class Meta:
        model = Subscription
        fields = [
            "id",
            "external_reference",
            "psychologist_id",
            "psychologist_name",
            "package_kind",
            "status",
            "sessions_total",
            "sessions_used",
            "sessions_remaining",
            "rollover_sessions",
            "current_period_start",
            "current_period_end",
            "next_billing_date",
            "auto_renew",
            "cancelled_at",
        ]
        read_only_fields = fields
