"""
Wallet ledger: cached balances backed by an append-only transaction log.

Public API:
    WalletService - all wallet reads and postings
    PostTransactionParams, Money, ReconciliationReport - data types
    WalletError, WalletNotFound, InsufficientBalance, InactiveWallet

Models (Wallet, WalletTransaction) live in billing.wallet.models and are
registered under the billing app.
"""

from .exceptions import InactiveWallet, InsufficientBalance, WalletError, WalletNotFound
from .types import Money, PostTransactionParams, ReconciliationReport

__all__ = [
    "Money",
    "PostTransactionParams",
    "ReconciliationReport",
    "WalletError",
    "WalletNotFound",
    "InsufficientBalance",
    "InactiveWallet",
]
