"""
Pytest fixtures for wallet ledger tests.

Sections:
    - Wallet Fixtures: Platform and provider wallets
    - Test Data Fixtures: Idempotency keys
"""

import uuid

import pytest

from billing.state_machines import TransactionCategory
from billing.tests.factories import PlatformWalletFactory, ProviderWalletFactory
from billing.wallet.services import WalletService
from billing.wallet.types import PostTransactionParams


# ==========================================================================
# Wallet Fixtures
# ==========================================================================


@pytest.fixture
def platform_wallet(db):
    """The platform wallet. Cannot go negative."""
    return PlatformWalletFactory()


@pytest.fixture
def provider_wallet(db):
    """An empty psychologist wallet. Cannot go negative."""
    return ProviderWalletFactory()


@pytest.fixture
def funded_provider_wallet(db):
    """Psychologist wallet holding 720.00 of recognized session revenue."""
    wallet = ProviderWalletFactory()
    WalletService.post_transaction(
        PostTransactionParams(
            wallet_id=wallet.id,
            amount_cents=72000,
            category=TransactionCategory.SESSION_REVENUE,
            idempotency_key=f"fund-{uuid.uuid4()}",
        )
    )
    wallet.refresh_from_db()
    return wallet


@pytest.fixture
def inactive_wallet(db):
    """Deactivated wallet, rejects postings."""
    return ProviderWalletFactory(is_active=False)


# ==========================================================================
# Test Data Fixtures
# ==========================================================================


@pytest.fixture
def unique_idempotency_key():
    """Generate a unique idempotency key for testing."""
    return f"test-{uuid.uuid4()}"
