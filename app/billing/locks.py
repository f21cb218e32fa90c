"""
Concurrency control for billing operations.

1. DistributedLock: Redis-based mutual exclusion across workers. The
   renewal scheduler holds one for the whole batch so two beat runs never
   charge the same period twice.

2. check_version / lock_row: row locks with an optional version check,
   giving subscription counter updates compare-and-set semantics.

Usage:
    from billing.locks import DistributedLock, check_version

    with DistributedLock("billing:renewals", ttl=600, blocking=False):
        renew_due_subscriptions()

    with transaction.atomic():
        sub = check_version(Subscription, sub_id, expected_version=3)
        sub.consume_session()
        sub.save()  # version auto-increments
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction
from django_redis import get_redis_connection

from billing.exceptions import LockAcquisitionError, StaleRecordError
from core.exceptions import NotFoundError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis lock with TTL and token ownership.

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Seconds before the lock auto-releases
        blocking: Wait for the lock instead of failing immediately
        timeout: Max wait in seconds when blocking

    Raises:
        LockAcquisitionError: From acquire() / __enter__ when the lock is held
    """

    # Only the owner (matching token) may delete or extend the key.
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def acquire(self) -> bool:
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            deadline = time.monotonic() + self.timeout
            while time.monotonic() < deadline:
                if self._try_acquire(redis):
                    return True
                time.sleep(0.05)
            self._token = None
            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis):
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def release(self) -> bool:
        """Release if held. Safe to call more than once."""
        if self._token is None:
            return False
        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def extend(self, ttl: int | None = None) -> bool:
        """Reset the remaining TTL (not additive). False if not held."""
        if self._token is None:
            return False
        result = self._get_redis().eval(
            self.EXTEND_SCRIPT, 1, self.key, self._token, ttl or self.ttl
        )
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


# =============================================================================
# Row Locking
# =============================================================================


def _not_found(model_class: type[models.Model], pk: Any) -> NotFoundError:
    model_name = model_class.__name__
    return NotFoundError(
        f"{model_name} {pk} not found",
        error_code=f"{model_name.upper()}_NOT_FOUND",
        details={"pk": str(pk)},
    )


def lock_row(model_class: type[T], pk: Any) -> T:
    """
    Re-read a row under select_for_update.

    Must run inside a transaction; the lock is held until it ends.

    Raises:
        NotFoundError: If the row doesn't exist
    """
    instance = model_class.objects.select_for_update().filter(pk=pk).first()
    if instance is None:
        raise _not_found(model_class, pk)
    return instance


def check_version(
    model_class: type[T],
    pk: Any,
    expected_version: int,
) -> T:
    """
    Lock a row and verify it is still at the version the caller read.

    Must run inside a transaction. The model's save() must increment
    ``version`` with an F() expression.

    Raises:
        StaleRecordError: The row moved on since it was read
        NotFoundError: The row doesn't exist
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )
        if instance is not None:
            return instance

        current = model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
        if current is None:
            raise _not_found(model_class, pk)

        model_name = model_class.__name__
        raise StaleRecordError(
            f"{model_name} {pk} has been modified "
            f"(expected version {expected_version}, current {current})",
            details={
                "pk": str(pk),
                "expected_version": expected_version,
                "current_version": current,
            },
        )


__all__ = [
    "DistributedLock",
    "check_version",
    "lock_row",
]
