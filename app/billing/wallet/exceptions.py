"""
Wallet ledger exceptions.

Exception Hierarchy:
    WalletError (base)
    ├── WalletNotFound - Wallet lookup failures
    ├── InsufficientBalance - Posting would overdraw the wallet
    └── InactiveWallet - Posting to a deactivated wallet
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    import uuid
    from typing import Any


class WalletError(BaseApplicationError):
    """Base exception for wallet ledger operations."""

    default_error_code: str = "WALLET_ERROR"


class WalletNotFound(WalletError):
    default_error_code: str = "WALLET_NOT_FOUND"


class InsufficientBalance(WalletError):
    """
    Raised when a debit would take a non-overdraft wallet below zero.

    Attributes:
        wallet_id: Wallet that would be overdrawn
        required: Debit size in cents
        available: Balance in cents at the time of the check
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        wallet_id: uuid.UUID,
        required: int,
        available: int,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.wallet_id = wallet_id
        self.required = required
        self.available = available

        full_details = {
            "wallet_id": str(wallet_id),
            "required_cents": required,
            "available_cents": available,
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=(
                f"Wallet {wallet_id} has insufficient balance: "
                f"required {required} cents, available {available} cents"
            ),
            error_code=error_code,
            details=full_details,
        )


class InactiveWallet(WalletError):
    """Raised when posting to a wallet that has been deactivated."""

    default_error_code: str = "INACTIVE_WALLET"
