"""
Tests for WalletService.

Tests cover:
- Posting credits and debits with gapless sequences
- Idempotency of repeated keys
- Overdraft and inactive-wallet rejection
- Atomic multi-wallet postings
- Reconciliation of the cached balance against the log
"""

import uuid

import pytest

from billing.state_machines import TransactionCategory, WalletType
from billing.wallet.exceptions import InactiveWallet, InsufficientBalance, WalletNotFound
from billing.wallet.models import Wallet, WalletTransaction
from billing.wallet.services import WalletService
from billing.wallet.types import PostTransactionParams
from practice.tests.factories import PsychologistFactory


def _posting(wallet, amount_cents, key=None, category=TransactionCategory.SESSION_REVENUE):
    return PostTransactionParams(
        wallet_id=wallet.id,
        amount_cents=amount_cents,
        category=category,
        idempotency_key=key or f"test-{uuid.uuid4()}",
    )


class TestPostTransactionParams:
    def test_zero_amount_rejected(self):
        with pytest.raises(ValueError):
            PostTransactionParams(
                wallet_id=uuid.uuid4(),
                amount_cents=0,
                category=TransactionCategory.REFUND,
                idempotency_key="k",
            )

    def test_idempotency_key_required(self):
        with pytest.raises(ValueError):
            PostTransactionParams(
                wallet_id=uuid.uuid4(),
                amount_cents=100,
                category=TransactionCategory.REFUND,
                idempotency_key="",
            )


# =============================================================================
# Wallet Lookup
# =============================================================================


@pytest.mark.django_db
class TestWalletLookup:
    def test_platform_wallet_created_once(self):
        first = WalletService.get_platform_wallet()
        second = WalletService.get_platform_wallet()

        assert first.pk == second.pk
        assert first.wallet_type == WalletType.PLATFORM

    def test_provider_wallet_created_once(self):
        psychologist = PsychologistFactory()

        first = WalletService.get_or_create_provider_wallet(psychologist)
        second = WalletService.get_or_create_provider_wallet(psychologist)

        assert first.pk == second.pk
        assert first.wallet_type == WalletType.PROVIDER

    def test_get_wallet_missing(self):
        with pytest.raises(WalletNotFound):
            WalletService.get_wallet(uuid.uuid4())


# =============================================================================
# Posting
# =============================================================================


@pytest.mark.django_db
class TestPostTransaction:
    def test_credit_updates_balance_and_log(self, provider_wallet):
        txn = WalletService.post_transaction(_posting(provider_wallet, 72000))

        provider_wallet.refresh_from_db()
        assert provider_wallet.balance_cents == 72000
        assert provider_wallet.transaction_count == 1
        assert txn.sequence == 1
        assert txn.balance_before_cents == 0
        assert txn.balance_after_cents == 72000
        assert txn.wallet_type == WalletType.PROVIDER

    def test_sequences_are_gapless(self, provider_wallet):
        for amount in (1000, 2000, -500):
            WalletService.post_transaction(_posting(provider_wallet, amount))

        sequences = list(
            WalletTransaction.objects.filter(wallet=provider_wallet)
            .order_by("sequence")
            .values_list("sequence", flat=True)
        )
        assert sequences == [1, 2, 3]
        assert WalletService.get_balance(provider_wallet.id).cents == 2500

    def test_repeated_key_returns_original(self, provider_wallet, unique_idempotency_key):
        first = WalletService.post_transaction(
            _posting(provider_wallet, 72000, key=unique_idempotency_key)
        )
        second = WalletService.post_transaction(
            _posting(provider_wallet, 72000, key=unique_idempotency_key)
        )

        provider_wallet.refresh_from_db()
        assert first.pk == second.pk
        assert provider_wallet.balance_cents == 72000
        assert WalletTransaction.objects.count() == 1

    def test_debit_within_balance(self, funded_provider_wallet):
        WalletService.post_transaction(_posting(funded_provider_wallet, -72000))

        funded_provider_wallet.refresh_from_db()
        assert funded_provider_wallet.balance_cents == 0

    def test_overdraft_rejected(self, funded_provider_wallet):
        with pytest.raises(InsufficientBalance) as exc_info:
            WalletService.post_transaction(_posting(funded_provider_wallet, -72001))

        assert exc_info.value.required == 72001
        assert exc_info.value.available == 72000
        funded_provider_wallet.refresh_from_db()
        assert funded_provider_wallet.balance_cents == 72000
        assert WalletTransaction.objects.filter(wallet=funded_provider_wallet).count() == 1

    def test_overdraft_allowed_when_configured(self, provider_wallet):
        provider_wallet.allow_negative = True
        provider_wallet.save()

        WalletService.post_transaction(_posting(provider_wallet, -500))

        provider_wallet.refresh_from_db()
        assert provider_wallet.balance_cents == -500

    def test_inactive_wallet_rejected(self, inactive_wallet):
        with pytest.raises(InactiveWallet):
            WalletService.post_transaction(_posting(inactive_wallet, 100))

    def test_unknown_wallet(self):
        with pytest.raises(WalletNotFound):
            WalletService.post_transaction(
                PostTransactionParams(
                    wallet_id=uuid.uuid4(),
                    amount_cents=100,
                    category=TransactionCategory.REFUND,
                    idempotency_key="unknown-wallet",
                )
            )


@pytest.mark.django_db
class TestPostTransactions:
    def test_transfer_between_wallets(self, funded_provider_wallet, platform_wallet):
        WalletService.post_transactions(
            [
                _posting(funded_provider_wallet, -72000, category=TransactionCategory.ACCOUNT_DELETED),
                _posting(platform_wallet, 72000, category=TransactionCategory.ACCOUNT_DELETED),
            ]
        )

        funded_provider_wallet.refresh_from_db()
        platform_wallet.refresh_from_db()
        assert funded_provider_wallet.balance_cents == 0
        assert platform_wallet.balance_cents == 72000

    def test_all_or_nothing(self, funded_provider_wallet, platform_wallet):
        with pytest.raises(InsufficientBalance):
            WalletService.post_transactions(
                [
                    _posting(platform_wallet, 5000),
                    _posting(funded_provider_wallet, -100000),
                ]
            )

        platform_wallet.refresh_from_db()
        assert platform_wallet.balance_cents == 0
        assert not WalletTransaction.objects.filter(wallet=platform_wallet).exists()

    def test_earlier_postings_count_toward_overdraft(self, provider_wallet):
        WalletService.post_transactions(
            [
                _posting(provider_wallet, 3000),
                _posting(provider_wallet, -3000),
            ]
        )

        provider_wallet.refresh_from_db()
        assert provider_wallet.balance_cents == 0
        assert provider_wallet.transaction_count == 2

    def test_empty(self):
        assert WalletService.post_transactions([]) == []


# =============================================================================
# Reconciliation
# =============================================================================


@pytest.mark.django_db
class TestReconcile:
    def test_consistent_wallet(self, provider_wallet):
        for amount in (1000, 2500, -700):
            WalletService.post_transaction(_posting(provider_wallet, amount))

        report = WalletService.reconcile(provider_wallet.id)

        assert report.is_consistent
        assert report.cached_cents == 2800
        assert report.replayed_cents == 2800
        assert report.transaction_count == 3
        assert WalletService.replay_balance(provider_wallet.id) == 2800

    def test_detects_drift(self, funded_provider_wallet):
        Wallet.objects.filter(pk=funded_provider_wallet.pk).update(balance_cents=99999)

        report = WalletService.reconcile(funded_provider_wallet.id)

        assert not report.is_consistent
        assert report.drift_cents == 99999 - 72000

    def test_empty_wallet(self, provider_wallet):
        report = WalletService.reconcile(provider_wallet.id)

        assert report.is_consistent
        assert report.replayed_cents == 0
        assert WalletService.replay_balance(provider_wallet.id) == 0


@pytest.mark.django_db
class TestTransactionsAndDeactivation:
    def test_newest_first(self, provider_wallet):
        for amount in (100, 200, 300):
            WalletService.post_transaction(_posting(provider_wallet, amount))

        transactions = WalletService.get_transactions(provider_wallet.id, limit=2)

        assert [t.sequence for t in transactions] == [3, 2]

    def test_deactivate(self, provider_wallet):
        WalletService.deactivate_wallet(provider_wallet.id)

        with pytest.raises(InactiveWallet):
            WalletService.post_transaction(_posting(provider_wallet, 100))
