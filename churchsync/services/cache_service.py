"""Read cache for expensive aggregate queries.

Two independent clocks govern an entry:
- hard expiry (``expires_at``, also set as the store's ``EX``): the entry is
  gone after it;
- staleness (``stale_after_seconds`` from ``created_at``): a stale entry is
  still returned by ``get``/``get_with_metadata`` but ``get_or_fetch``
  refetches it.

The store's expiry is enforced server-side, but ``expires_at`` is also checked
here so the result never depends on when the store evicts.

Entries live in Redis when it is configured, otherwise in a per-process
``MemoryCacheStore`` with the same entry format and expiry rules.

Values are stored as JSON. Only JSON-native values (dict, list, str, int,
float, bool, None) come back exactly as stored; a tuple comes back as a list
and a datetime as an ISO string.

Prefix invalidation uses ``SCAN MATCH``, which walks the whole keyspace; cost
grows with the number of keys in the database, not the number matched.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Awaitable, Callable

from pydantic import ValidationError
from redis.exceptions import RedisError

from churchsync.core.errors import AppError, ErrorCode
from churchsync.core.structured_logging import build_log_context
from churchsync.schemas.cache import CacheEntry, CacheGetResult

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 900
SCAN_BATCH_SIZE = 500
DELETE_BATCH_SIZE = 100

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so ``value`` matches literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


def glob_to_regex(pattern: str) -> re.Pattern:
    """Compile a Redis glob (``*``, ``?`` and backslash escapes) to a regex."""
    parts: list[str] = []
    chars = iter(pattern)
    for char in chars:
        if char == "\\":
            parts.append(re.escape(next(chars, "\\")))
        elif char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


class MemoryCacheStore:
    """
    Per-process stand-in for the Redis commands the cache uses.

    Used when Redis is disabled. Expired keys are dropped on read and
    purged on every write, so the dict only holds live entries.
    """

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._values: dict[str, str] = {}
        self._deadlines: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._values)

    def _expired(self, key: str) -> bool:
        deadline = self._deadlines.get(key)
        return deadline is not None and self._clock() >= deadline

    def _drop(self, key: str) -> bool:
        self._deadlines.pop(key, None)
        return self._values.pop(key, None) is not None

    def _purge_expired(self) -> None:
        for key in [k for k in self._deadlines if self._expired(k)]:
            self._drop(key)

    async def get(self, key: str) -> str | None:
        if self._expired(key):
            self._drop(key)
            return None
        return self._values.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._purge_expired()
        self._values[key] = value
        if ex is None:
            self._deadlines.pop(key, None)
        else:
            self._deadlines[key] = self._clock() + ex
        return True

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self._drop(key))

    async def scan_iter(self, match: str = "*", count: int | None = None) -> AsyncIterator[str]:
        self._purge_expired()
        regex = glob_to_regex(match)
        for key in list(self._values):
            if regex.fullmatch(key):
                yield key


class CacheKeys:
    """Cache key builders."""

    @staticmethod
    def service_kpis(service_id: str) -> str:
        return f"kpis:service:{service_id}"

    @staticmethod
    def evangelism_stats(period: str) -> str:
        return f"stats:evangelism:{period}"

    @staticmethod
    def member_journey(member_id: str) -> str:
        return f"journey:member:{member_id}"

    @staticmethod
    def department_roster(department_id: str) -> str:
        return f"roster:dept:{department_id}"

    @staticmethod
    def attendance_breakdown(service_id: str) -> str:
        return f"attendance:breakdown:{service_id}"

    @staticmethod
    def follow_up_summary() -> str:
        return "follow-up:summary"

    @staticmethod
    def department_attendance(service_id: str, department_id: str) -> str:
        return f"attendance:dept:{service_id}:{department_id}"

    @staticmethod
    def service_comparison(service_a_id: str, service_b_id: str) -> str:
        return f"comparison:{service_a_id}:{service_b_id}"


class CachePatterns:
    """Key prefixes for bulk invalidation."""

    ALL_KPIS = "kpis:"
    ALL_STATS = "stats:"
    ALL_JOURNEYS = "journey:"
    ALL_ROSTERS = "roster:"
    ALL_ATTENDANCE = "attendance:"
    ALL_COMPARISONS = "comparison:"


class CacheService:
    def __init__(
        self,
        redis_client=None,
        *,
        prefix: str = "churchsync:cache:",
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        stale_after_seconds: int = DEFAULT_TTL_SECONDS,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.prefix = prefix
        self.default_ttl_seconds = default_ttl_seconds
        self.stale_after_seconds = stale_after_seconds
        self._now = now
        self._distributed = redis_client is not None
        self._store = (
            redis_client
            if redis_client is not None
            else MemoryCacheStore(clock=lambda: self._now().timestamp())
        )

    @property
    def distributed(self) -> bool:
        """False when Redis is not configured and entries live in this process."""
        return self._distributed

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_with_metadata(self, key: str) -> CacheGetResult | None:
        """Cached value plus last-updated time and staleness, or None."""
        try:
            raw = await self._store.get(self._key(key))
        except RedisError:
            logger.warning(
                "Cache read failed, treating as miss",
                exc_info=True,
                extra=build_log_context(operation="cache_get"),
            )
            return None
        if raw is None:
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning(
                "Discarding unreadable cache entry",
                extra=build_log_context(operation="cache_get", event="cache_corrupt"),
            )
            return None

        now = self._now()
        if now.timestamp() >= entry.expires_at:
            return None

        age = (now - entry.created_at).total_seconds()
        return CacheGetResult(
            data=entry.data,
            last_updated=entry.created_at,
            is_stale=age > self.stale_after_seconds,
        )

    async def get(self, key: str) -> Any | None:
        result = await self.get_with_metadata(key)
        return result.data if result else None

    async def exists(self, key: str) -> bool:
        return await self.get_with_metadata(key) is not None

    async def get_last_updated(self, key: str) -> datetime | None:
        result = await self.get_with_metadata(key)
        return result.last_updated if result else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store ``value`` with a hard TTL. Only JSON-native values round-trip exactly."""
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise AppError(ErrorCode.INVALID_INPUT, "Cache TTL must be positive")

        created_at = self._now()
        entry = CacheEntry(
            data=value,
            created_at=created_at,
            expires_at=(created_at + timedelta(seconds=ttl)).timestamp(),
        )
        try:
            await self._store.set(self._key(key), entry.model_dump_json(), ex=ttl)
        except RedisError as exc:
            raise AppError(ErrorCode.CACHE_ERROR, "Cache write failed") from exc

    async def invalidate(self, key: str) -> None:
        try:
            await self._store.delete(self._key(key))
        except RedisError as exc:
            raise AppError(ErrorCode.CACHE_ERROR, "Cache invalidation failed") from exc

    async def invalidate_pattern(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``. Returns the count removed."""
        match = escape_glob(self._key(prefix)) + "*"
        removed = 0
        try:
            batch: list = []
            async for store_key in self._store.scan_iter(match=match, count=SCAN_BATCH_SIZE):
                batch.append(store_key)
                if len(batch) >= DELETE_BATCH_SIZE:
                    removed += await self._store.delete(*batch)
                    batch = []
            if batch:
                removed += await self._store.delete(*batch)
        except RedisError as exc:
            raise AppError(
                ErrorCode.CACHE_ERROR,
                "Cache pattern invalidation failed",
                details={"removed": removed},
            ) from exc

        logger.info(
            "Invalidated %s cache entries",
            removed,
            extra=build_log_context(operation="cache_invalidate_pattern"),
        )
        return removed

    # ------------------------------------------------------------------
    # Read-through
    # ------------------------------------------------------------------

    async def refresh(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        ttl_seconds: int | None = None,
    ) -> CacheGetResult:
        """Fetch fresh data, bypassing any cached value, and store it."""
        data = await fetch_fn()
        try:
            await self.set(key, data, ttl_seconds)
        except AppError as exc:
            if exc.code != ErrorCode.CACHE_ERROR:
                raise
            logger.warning(
                "Cache write failed, returning uncached data",
                exc_info=True,
                extra=build_log_context(operation="cache_refresh"),
            )
        return CacheGetResult(data=data, last_updated=self._now(), is_stale=False)

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        ttl_seconds: int | None = None,
    ) -> CacheGetResult:
        """Cached value if present and fresh, otherwise fetch and store."""
        cached = await self.get_with_metadata(key)
        if cached is not None and not cached.is_stale:
            return cached
        return await self.refresh(key, fetch_fn, ttl_seconds)
