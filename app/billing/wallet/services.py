"""
Wallet service layer.

Every change to a wallet balance goes through WalletService so that the
cached balance and the transaction that justifies it are written in one
atomic unit under a row lock.

Usage:
    from billing.wallet.services import WalletService
    from billing.wallet.types import PostTransactionParams

    platform = WalletService.get_platform_wallet()
    txn = WalletService.post_transaction(PostTransactionParams(
        wallet_id=platform.id,
        amount_cents=4000,
        category=TransactionCategory.PLATFORM_FEE,
        idempotency_key=f"platform_fee:{payment.id}",
    ))
"""

from __future__ import annotations

import logging
import uuid

from django.conf import settings
from django.db import IntegrityError, models, transaction
from django.db.models import Sum, Value
from django.db.models.functions import Coalesce

from billing.state_machines import WalletType
from billing.wallet.exceptions import InactiveWallet, InsufficientBalance, WalletNotFound
from billing.wallet.models import Wallet, WalletTransaction
from billing.wallet.types import Money, PostTransactionParams, ReconciliationReport

logger = logging.getLogger(__name__)


class WalletService:
    """
    Service class for wallet ledger operations.

    Key features:
    - Cached balance and transaction row written together, never apart
    - Idempotency via unique keys (safe to retry)
    - Overdraft check before debits
    - Wallet rows locked in id order to prevent deadlocks

    All methods are static - no instance state is maintained.
    """

    @staticmethod
    def get_platform_wallet() -> Wallet:
        """Get or lazily create the single platform wallet."""
        wallet, _ = Wallet.objects.get_or_create(
            wallet_type=WalletType.PLATFORM,
            defaults={"currency": settings.BILLING_CURRENCY},
        )
        return wallet

    @staticmethod
    def get_or_create_provider_wallet(provider) -> Wallet:
        """Get or lazily create a psychologist's wallet."""
        wallet, _ = Wallet.objects.get_or_create(
            provider=provider,
            defaults={
                "wallet_type": WalletType.PROVIDER,
                "currency": settings.BILLING_CURRENCY,
            },
        )
        return wallet

    @staticmethod
    def get_wallet(wallet_id: uuid.UUID) -> Wallet:
        """
        Raises:
            WalletNotFound: If wallet doesn't exist
        """
        try:
            return Wallet.objects.get(id=wallet_id)
        except Wallet.DoesNotExist:
            raise WalletNotFound(
                f"Wallet {wallet_id} not found",
                details={"wallet_id": str(wallet_id)},
            )

    @staticmethod
    def _validate_posting(wallet: Wallet, amount_cents: int) -> None:
        """
        Raises:
            InactiveWallet: If wallet is inactive
            InsufficientBalance: If a debit would overdraw the wallet
        """
        if not wallet.is_active:
            raise InactiveWallet(
                f"Wallet {wallet.id} is inactive",
                details={"wallet_id": str(wallet.id)},
            )
        if (
            amount_cents < 0
            and not wallet.allow_negative
            and wallet.balance_cents + amount_cents < 0
        ):
            raise InsufficientBalance(
                wallet_id=wallet.id,
                required=-amount_cents,
                available=wallet.balance_cents,
            )

    @staticmethod
    def post_transaction(params: PostTransactionParams) -> WalletTransaction:
        """
        Append one transaction and update the cached balance.

        Idempotent - a repeated idempotency_key returns the original row
        without touching the balance.

        Raises:
            WalletNotFound: If the wallet doesn't exist
            InactiveWallet: If the wallet is inactive
            InsufficientBalance: If a debit would overdraw the wallet
        """
        return WalletService.post_transactions([params])[0]

    @staticmethod
    def post_transactions(postings: list[PostTransactionParams]) -> list[WalletTransaction]:
        """
        Append several transactions atomically.

        All postings succeed or all fail. Postings are applied in order, so
        earlier ones affect the overdraft check of later ones.
        """
        if not postings:
            return []

        results: list[WalletTransaction] = []

        with transaction.atomic():
            wallet_ids = {params.wallet_id for params in postings}
            wallets = {
                wallet.id: wallet
                for wallet in Wallet.objects.filter(id__in=wallet_ids)
                .select_for_update()
                .order_by("id")
            }
            for wallet_id in wallet_ids:
                if wallet_id not in wallets:
                    raise WalletNotFound(
                        f"Wallet {wallet_id} not found",
                        details={"wallet_id": str(wallet_id)},
                    )

            for params in postings:
                wallet = wallets[params.wallet_id]

                # Idempotency first: the balance must not move for a replay.
                existing = WalletTransaction.objects.filter(
                    idempotency_key=params.idempotency_key
                ).first()
                if existing is not None:
                    results.append(existing)
                    continue

                WalletService._validate_posting(wallet, params.amount_cents)

                balance_before = wallet.balance_cents
                sequence = wallet.transaction_count + 1
                try:
                    with transaction.atomic():
                        txn = WalletTransaction.objects.create(
                            wallet=wallet,
                            wallet_type=wallet.wallet_type,
                            sequence=sequence,
                            amount_cents=params.amount_cents,
                            balance_before_cents=balance_before,
                            balance_after_cents=balance_before + params.amount_cents,
                            currency=wallet.currency,
                            category=params.category,
                            payment_id=params.payment_id,
                            provider_id=params.provider_id,
                            description=params.description,
                            idempotency_key=params.idempotency_key,
                        )
                except IntegrityError:
                    # Same key committed by another worker between check and insert
                    results.append(
                        WalletTransaction.objects.get(idempotency_key=params.idempotency_key)
                    )
                    continue

                wallet.balance_cents = txn.balance_after_cents
                wallet.transaction_count = sequence
                wallet.save(update_fields=["balance_cents", "transaction_count", "updated_at"])

                logger.info(
                    "Wallet transaction posted",
                    extra={
                        "wallet_id": str(wallet.id),
                        "wallet_type": wallet.wallet_type,
                        "category": params.category,
                        "amount_cents": params.amount_cents,
                        "balance_after_cents": txn.balance_after_cents,
                        "idempotency_key": params.idempotency_key,
                    },
                )
                results.append(txn)

        return results

    @staticmethod
    def get_balance(wallet_id: uuid.UUID) -> Money:
        wallet = WalletService.get_wallet(wallet_id)
        return Money(cents=wallet.balance_cents, currency=wallet.currency)

    @staticmethod
    def replay_balance(wallet_id: uuid.UUID) -> int:
        """Sum of all transaction amounts for the wallet, in cents."""
        return WalletTransaction.objects.filter(wallet_id=wallet_id).aggregate(
            total=Coalesce(Sum("amount_cents"), Value(0), output_field=models.BigIntegerField())
        )["total"]

    @staticmethod
    def reconcile(wallet_id: uuid.UUID) -> ReconciliationReport:
        """
        Replay the transaction log in sequence order against the cache.

        Checks that each row starts where the previous one ended and that
        the final running balance equals the cached balance.
        """
        wallet = WalletService.get_wallet(wallet_id)
        running = 0
        count = 0
        continuity_ok = True
        for txn in WalletTransaction.objects.filter(wallet=wallet).order_by("sequence"):
            count += 1
            if txn.sequence != count or txn.balance_before_cents != running:
                continuity_ok = False
            running += txn.amount_cents

        report = ReconciliationReport(
            wallet_id=wallet.id,
            cached_cents=wallet.balance_cents,
            replayed_cents=running,
            transaction_count=count,
            continuity_ok=continuity_ok,
        )
        if not report.is_consistent:
            logger.error(
                "Wallet balance drift detected",
                extra={
                    "wallet_id": str(wallet.id),
                    "cached_cents": report.cached_cents,
                    "replayed_cents": report.replayed_cents,
                    "continuity_ok": continuity_ok,
                },
            )
        return report

    @staticmethod
    def get_transactions(
        wallet_id: uuid.UUID,
        limit: int = 100,
        offset: int = 0,
    ) -> list[WalletTransaction]:
        """Newest transactions first."""
        return list(
            WalletTransaction.objects.filter(wallet_id=wallet_id).order_by("-sequence")[
                offset : offset + limit
            ]
        )

    @staticmethod
    def deactivate_wallet(wallet_id: uuid.UUID) -> Wallet:
        """Soft-delete: history is kept, new postings are rejected."""
        wallet = WalletService.get_wallet(wallet_id)
        wallet.is_active = False
        wallet.save(update_fields=["is_active", "updated_at"])
        return wallet
