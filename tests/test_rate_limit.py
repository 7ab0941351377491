"""Tests for the token bucket and backoff calculation."""

import asyncio

import pytest

from churchsync.core.rate_limit import RetryPolicy, TokenBucket, calculate_backoff_delay


def test_backoff_doubles_without_jitter():
    policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=10000, jitter_ms=0)

    delays = [calculate_backoff_delay(attempt, policy) for attempt in range(4)]

    assert delays == [1.0, 2.0, 4.0, 8.0]


def test_backoff_is_capped_at_max_delay():
    policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=10000, jitter_ms=1000)

    assert calculate_backoff_delay(5, policy, rng=lambda a, b: b) == 10.0


def test_backoff_adds_jitter_in_range():
    policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=10000, jitter_ms=1000)
    seen = []

    def rng(low, high):
        seen.append((low, high))
        return 250

    assert calculate_backoff_delay(1, policy, rng=rng) == 2.25
    assert seen == [(0, 1000)]


@pytest.mark.asyncio
async def test_bucket_allows_burst_up_to_rate(clock):
    bucket = TokenBucket(5, clock=clock, sleep=clock.sleep)

    for _ in range(5):
        assert await bucket.acquire() == 0

    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_bucket_sleeps_exactly_until_next_token(clock):
    bucket = TokenBucket(5, clock=clock, sleep=clock.sleep)
    for _ in range(5):
        await bucket.acquire()

    waited = await bucket.acquire()

    assert waited == pytest.approx(0.2)
    assert clock.sleeps == [pytest.approx(0.2)]
    assert bucket.tokens == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_bucket_refills_continuously_up_to_capacity(clock):
    bucket = TokenBucket(5, clock=clock, sleep=clock.sleep)
    for _ in range(5):
        await bucket.acquire()

    clock.now += 0.5
    bucket._refill()
    assert bucket.tokens == pytest.approx(2.5)

    clock.now += 60
    bucket._refill()
    assert bucket.tokens == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_concurrent_acquires_are_serialized(clock):
    bucket = TokenBucket(5, clock=clock, sleep=clock.sleep)

    await asyncio.gather(*(bucket.acquire() for _ in range(8)))

    # 5 from the burst, 3 more at 0.2s each
    assert sum(clock.sleeps) == pytest.approx(0.6)
    assert len(clock.sleeps) == 3


def test_bucket_rejects_non_positive_rate():
    with pytest.raises(ValueError):
        TokenBucket(0)
