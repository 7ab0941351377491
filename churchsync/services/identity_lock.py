"""Advisory lock around identity creation.

Two intake events for the same new person can both resolve "no match" and
both create a member. Creation therefore runs under a lock keyed by every
normalized unique key of the candidate (phone and email), and re-resolves
while holding it.

Keys are taken in sorted order so two candidates sharing a phone but not an
email cannot deadlock. With Redis configured the lock is a ``redis.asyncio``
lock shared by every process; without it the lock is per-process.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Iterable

from redis.exceptions import LockError

from churchsync.core.errors import AppError, ErrorCode
from churchsync.core.structured_logging import build_log_context

logger = logging.getLogger(__name__)

DEFAULT_LOCK_PREFIX = "churchsync:identity-lock:"


def identity_lock_keys(phone: str | None, email: str | None) -> list[str]:
    """Sorted lock keys for already-normalized unique keys.

    Keys are hashed so no phone number or email ends up in Redis key names.
    """
    keys = set()
    if phone:
        keys.add("phone:" + hashlib.sha256(phone.encode()).hexdigest()[:32])
    if email:
        keys.add("email:" + hashlib.sha256(email.encode()).hexdigest()[:32])
    return sorted(keys)


class IdentityLock:
    def __init__(
        self,
        redis_client=None,
        *,
        prefix: str = DEFAULT_LOCK_PREFIX,
        timeout: float = 30.0,
        blocking_timeout: float = 10.0,
    ) -> None:
        self._redis = redis_client
        self.prefix = prefix
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self._local_locks: dict[str, asyncio.Lock] = {}
        self._local_users: dict[str, int] = {}

    @property
    def distributed(self) -> bool:
        return self._redis is not None

    @asynccontextmanager
    async def hold(self, keys: Iterable[str]) -> AsyncIterator[None]:
        """Hold every key's lock for the duration of the block."""
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self._acquire(key))
            yield

    @asynccontextmanager
    async def _acquire(self, key: str) -> AsyncIterator[None]:
        if self._redis is not None:
            lock = self._redis.lock(
                f"{self.prefix}{key}",
                timeout=self.timeout,
                blocking_timeout=self.blocking_timeout,
            )
            try:
                acquired = await lock.acquire()
            except LockError as exc:
                raise self._timeout_error(key) from exc
            if not acquired:
                raise self._timeout_error(key)
            try:
                yield
            finally:
                try:
                    await lock.release()
                except LockError:
                    # Expired while held; the key may already belong to someone else
                    logger.warning(
                        "Identity lock expired before release",
                        extra=build_log_context(operation="identity_lock", event="lock_expired"),
                    )
            return

        # Entries are reference-counted (holder + waiters) and dropped at zero
        local = self._local_locks.setdefault(key, asyncio.Lock())
        self._local_users[key] = self._local_users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(local.acquire(), timeout=self.blocking_timeout)
            except asyncio.TimeoutError as exc:
                raise self._timeout_error(key) from exc
            try:
                yield
            finally:
                local.release()
        finally:
            self._local_users[key] -= 1
            if not self._local_users[key]:
                del self._local_users[key]
                del self._local_locks[key]

    def _timeout_error(self, key: str) -> AppError:
        logger.warning(
            "Timed out waiting for identity lock",
            extra=build_log_context(operation="identity_lock", event="lock_timeout"),
        )
        return AppError(
            ErrorCode.TIMEOUT,
            "Timed out waiting for identity lock",
            details={"lock_key": key},
        )
