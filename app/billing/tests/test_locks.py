"""
Tests for billing concurrency helpers.

Tests cover:
- DistributedLock acquire/release/extend against a mocked Redis client
- lock_row and check_version row locking
"""

import uuid

import pytest

from billing.exceptions import LockAcquisitionError, StaleRecordError
from billing.locks import DistributedLock, check_version, lock_row
from billing.models import Subscription
from billing.tests.factories import SubscriptionFactory
from core.exceptions import NotFoundError


class TestDistributedLock:
    def test_acquire_sets_key_with_ttl(self, mock_redis):
        lock = DistributedLock("renewals", ttl=60, blocking=False)

        assert lock.acquire()

        args, kwargs = mock_redis.set.call_args
        assert args[0] == "lock:renewals"
        assert kwargs == {"nx": True, "ex": 60}
        assert lock.is_held

    def test_held_lock_raises_when_non_blocking(self, mock_redis):
        mock_redis.set.return_value = False
        lock = DistributedLock("renewals", blocking=False)

        with pytest.raises(LockAcquisitionError):
            lock.acquire()

        assert not lock.is_held

    def test_blocking_times_out(self, mock_redis):
        mock_redis.set.return_value = False
        lock = DistributedLock("renewals", blocking=True, timeout=0.1)

        with pytest.raises(LockAcquisitionError):
            lock.acquire()

    def test_release_uses_owner_token(self, mock_redis):
        lock = DistributedLock("renewals", blocking=False)
        lock.acquire()
        token = mock_redis.set.call_args[0][1]

        assert lock.release()

        args = mock_redis.eval.call_args[0]
        assert args[1:] == (1, "lock:renewals", token)
        assert not lock.is_held

    def test_release_twice_is_safe(self, mock_redis):
        lock = DistributedLock("renewals", blocking=False)
        lock.acquire()
        lock.release()

        assert lock.release() is False
        assert mock_redis.eval.call_count == 1

    def test_extend_when_not_held(self, mock_redis):
        assert DistributedLock("renewals").extend() is False

    def test_context_manager_releases_on_error(self, mock_redis):
        with pytest.raises(ValueError):
            with DistributedLock("renewals", blocking=False):
                raise ValueError("boom")

        mock_redis.eval.assert_called_once()


@pytest.mark.django_db
class TestRowLocks:
    def test_lock_row(self):
        subscription = SubscriptionFactory()

        locked = lock_row(Subscription, subscription.id)

        assert locked.pk == subscription.pk

    def test_lock_row_missing(self):
        with pytest.raises(NotFoundError) as exc_info:
            lock_row(Subscription, uuid.uuid4())

        assert exc_info.value.error_code == "SUBSCRIPTION_NOT_FOUND"

    def test_check_version_current(self):
        subscription = SubscriptionFactory()

        assert check_version(Subscription, subscription.id, 1).pk == subscription.pk

    def test_check_version_stale(self):
        subscription = SubscriptionFactory()
        subscription.save()  # version 2

        with pytest.raises(StaleRecordError) as exc_info:
            check_version(Subscription, subscription.id, 1)

        assert exc_info.value.details["current_version"] == 2

    def test_check_version_missing(self):
        with pytest.raises(NotFoundError):
            check_version(Subscription, uuid.uuid4(), 1)
