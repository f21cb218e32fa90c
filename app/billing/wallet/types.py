"""
Data types for wallet ledger operations.

Types:
    Money: Amount in cents with currency, for display and arithmetic
    PostTransactionParams: Input to WalletService.post_transaction
    ReconciliationReport: Output of WalletService.reconcile

Usage:
    params = PostTransactionParams(
        wallet_id=platform.id,
        amount_cents=4000,
        category=TransactionCategory.PLATFORM_FEE,
        idempotency_key=f"platform_fee:{payment.id}",
        payment_id=payment.id,
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass


@dataclass
class Money:
    """
    A monetary amount in minor units.

    Example:
        str(Money(cents=84000, currency="mxn"))  # "$840.00 MXN"
    """

    cents: int
    currency: str = "mxn"

    def __str__(self) -> str:
        return f"${self.cents / 100:.2f} {self.currency.upper()}"

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot add Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )
        return Money(cents=self.cents + other.cents, currency=self.currency)


@dataclass
class PostTransactionParams:
    """
    Parameters for one wallet posting.

    Required Attributes:
        wallet_id: Wallet to post against
        amount_cents: Signed amount, credit > 0, debit < 0, never zero
        category: TransactionCategory value
        idempotency_key: Unique key, a repeat returns the original posting

    Optional Attributes:
        payment_id / provider_id: Provenance links
        description: Free text for support
    """

    wallet_id: uuid.UUID
    amount_cents: int
    category: str
    idempotency_key: str

    payment_id: uuid.UUID | None = None
    provider_id: uuid.UUID | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if self.amount_cents == 0:
            raise ValueError("amount_cents must be non-zero")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")


@dataclass(frozen=True)
class ReconciliationReport:
    """Cached balance versus the balance replayed from transactions."""

    wallet_id: uuid.UUID
    cached_cents: int
    replayed_cents: int
    transaction_count: int
    continuity_ok: bool

    @property
    def drift_cents(self) -> int:
        return self.cached_cents - self.replayed_cents

    @property
    def is_consistent(self) -> bool:
        return self.drift_cents == 0 and self.continuity_ok
