"""Explicit wiring of clients and services from settings."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from churchsync.core.config import Settings
from churchsync.core.rate_limit import TokenBucket
from churchsync.core.redis_client import create_async_redis_client
from churchsync.core.structured_logging import configure_logging
from churchsync.services.attendance_service import AttendanceService
from churchsync.services.cache_service import CacheService
from churchsync.services.follow_up_service import FollowUpService
from churchsync.services.identity_lock import IdentityLock
from churchsync.services.intake_service import IntakeService
from churchsync.services.member_service import MemberService
from churchsync.services.record_client import RecordClient


@dataclass(frozen=True)
class Container:
    settings: Settings

    rate_limiter: TokenBucket
    record_client: RecordClient
    redis: object | None

    identity_lock: IdentityLock
    cache: CacheService

    member_service: MemberService
    attendance_service: AttendanceService
    follow_up_service: FollowUpService
    intake_service: IntakeService

    async def aclose(self) -> None:
        await self.record_client.aclose()
        if self.redis is not None:
            await self.redis.aclose()


def build_container(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
    redis_client=None,
) -> Container:
    """
    Build every service for one process.

    The token bucket is created here, so everything built from the same
    container shares one rate limit.
    """
    configure_logging(settings.LOG_LEVEL)

    if redis_client is None:
        redis_client = create_async_redis_client(
            settings.redis_url, max_connections=settings.REDIS_MAX_CONNECTIONS
        )

    rate_limiter = TokenBucket(settings.AIRTABLE_RATE_LIMIT_PER_SECOND)
    record_client = RecordClient(
        settings.airtable_base_url,
        settings.AIRTABLE_API_KEY,
        rate_limiter=rate_limiter,
        retry_policy=settings.retry_policy,
        http_client=http_client,
        timeout=settings.AIRTABLE_TIMEOUT_SECONDS,
        default_country_code=settings.DEFAULT_COUNTRY_CODE,
    )

    identity_lock = IdentityLock(
        redis_client,
        timeout=settings.IDENTITY_LOCK_TIMEOUT_SECONDS,
        blocking_timeout=settings.IDENTITY_LOCK_WAIT_SECONDS,
    )
    cache = CacheService(
        redis_client,
        prefix=settings.CACHE_KEY_PREFIX,
        default_ttl_seconds=settings.CACHE_DEFAULT_TTL_SECONDS,
        stale_after_seconds=settings.CACHE_STALE_AFTER_SECONDS,
    )

    member_service = MemberService(record_client, identity_lock)
    attendance_service = AttendanceService(record_client)
    follow_up_service = FollowUpService(
        record_client,
        default_due_days=settings.DEFAULT_FOLLOW_UP_DUE_DAYS,
        default_capacity=settings.VOLUNTEER_CAPACITY_LIMIT,
    )
    intake_service = IntakeService(
        record_client,
        member_service,
        attendance_service,
        follow_up_service,
    )

    return Container(
        settings=settings,
        rate_limiter=rate_limiter,
        record_client=record_client,
        redis=redis_client,
        identity_lock=identity_lock,
        cache=cache,
        member_service=member_service,
        attendance_service=attendance_service,
        follow_up_service=follow_up_service,
        intake_service=intake_service,
    )
