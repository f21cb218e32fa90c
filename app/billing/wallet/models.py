"""
Wallet ledger models.

- Wallet: cached running balance for the platform or one provider
- WalletTransaction: immutable, append-only posting that justifies every
  balance change

The cached balance is a materialized view over the transaction log:
replaying a wallet's transactions in sequence order reproduces it exactly.
Both are only ever written together by WalletService.post_transaction.

Usage:
    from billing.wallet.models import Wallet

    wallet = Wallet.objects.get(wallet_type=WalletType.PLATFORM)
    wallet.balance_cents  # cached, reconciles with wallet.transactions
"""

from __future__ import annotations

from django.db import models
from django.db.models import F, Q

from billing.state_machines import TransactionCategory, WalletType
from billing.wallet.exceptions import WalletError
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class Wallet(UUIDPrimaryKeyMixin, BaseModel):
    """
    Running balance for the platform or for one psychologist.

    Fields:
        wallet_type: platform or provider
        provider: Owning psychologist, null for the platform wallet and for
            wallets detached by account deletion
        balance_cents: Cached sum of all transaction amounts
        transaction_count: Sequence number of the last transaction
        allow_negative: Whether postings may overdraw the wallet
        is_active: Inactive wallets reject postings

    Constraints:
        - At most one platform wallet
        - At most one wallet per provider (one-to-one)
    """

    wallet_type = models.CharField(max_length=20, choices=WalletType.choices)
    provider = models.OneToOneField(
        "practice.Psychologist",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="wallet",
    )
    balance_cents = models.BigIntegerField(default=0)
    transaction_count = models.PositiveBigIntegerField(default=0)
    currency = models.CharField(max_length=3, default="mxn")
    allow_negative = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["wallet_type"],
                condition=Q(wallet_type=WalletType.PLATFORM),
                name="single_platform_wallet",
            ),
        ]

    def __str__(self) -> str:
        if self.wallet_type == WalletType.PLATFORM:
            return "Platform wallet"
        return f"Provider wallet ({self.provider_id})"


class WalletTransaction(UUIDPrimaryKeyMixin, models.Model):
    """
    One immutable posting against a wallet.

    Entries are never updated or deleted; corrections are new postings.
    sequence is gapless per wallet and defines replay order.

    Constraints:
        - balance_after_cents == balance_before_cents + amount_cents
        - amount_cents != 0
        - idempotency_key is unique
        - (wallet, sequence) is unique
    """

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    wallet = models.ForeignKey(
        Wallet,
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    wallet_type = models.CharField(max_length=20, choices=WalletType.choices)
    sequence = models.PositiveBigIntegerField()
    amount_cents = models.BigIntegerField(help_text="Signed amount in cents")
    balance_before_cents = models.BigIntegerField()
    balance_after_cents = models.BigIntegerField()
    currency = models.CharField(max_length=3, default="mxn")
    category = models.CharField(max_length=30, choices=TransactionCategory.choices)

    payment = models.ForeignKey(
        "billing.Payment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="wallet_transactions",
    )
    provider = models.ForeignKey(
        "practice.Psychologist",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="wallet_transactions",
    )
    description = models.TextField(blank=True, default="")
    idempotency_key = models.CharField(max_length=255, unique=True)

    class Meta:
        ordering = ["wallet", "sequence"]
        indexes = [models.Index(fields=["category", "created_at"])]
        constraints = [
            models.UniqueConstraint(
                fields=["wallet", "sequence"],
                name="wallet_transaction_sequence_unique",
            ),
            models.CheckConstraint(
                condition=Q(
                    balance_after_cents=F("balance_before_cents") + F("amount_cents")
                ),
                name="wallet_transaction_balance_continuity",
            ),
            models.CheckConstraint(
                condition=~Q(amount_cents=0),
                name="wallet_transaction_amount_non_zero",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_category_display()}: {self.amount_cents} cents"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise WalletError(
                "Wallet transactions are immutable",
                error_code="TRANSACTION_IMMUTABLE",
                details={"transaction_id": str(self.pk)},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise WalletError(
            "Wallet transactions are immutable",
            error_code="TRANSACTION_IMMUTABLE",
            details={"transaction_id": str(self.pk)},
        )
