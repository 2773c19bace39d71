"""Store-level tests that run the real commands and Lua script on fakeredis."""

import asyncio

import fakeredis
import pytest

from edgeguard.app.middleware.rate_limit import RedisRateLimiter
from edgeguard.app.services.attack_detector import AttackAggregator
from edgeguard.app.services.models import AttackCounters
from edgeguard.app.services.notifier import AttackNotifier
from tests.conftest import RecordingChannel


@pytest.fixture
def store():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


class TestSlidingWindowScript:

    @pytest.mark.asyncio
    async def test_concurrent_admits_stop_at_capacity(self, store):
        limiter = RedisRateLimiter(store, requests=10, window_seconds=10)

        results = await asyncio.gather(*(limiter.admit("ratelimit:ip:a") for _ in range(25)))

        assert results.count(True) == 10
        assert await store.zcard("ratelimit:ip:a") == 10

    @pytest.mark.asyncio
    async def test_denied_result_carries_retry_after(self, store):
        limiter = RedisRateLimiter(store, requests=2, window_seconds=10)
        first = await limiter.is_allowed("ratelimit:ip:a")
        await limiter.is_allowed("ratelimit:ip:a")

        result = await limiter.is_allowed("ratelimit:ip:a")

        assert first.remaining == 1
        assert result.allowed is False
        assert result.remaining == 0
        assert 1 <= result.retry_after <= 10
        assert result.reset_time >= first.reset_time

    @pytest.mark.asyncio
    async def test_window_key_expires_with_window(self, store):
        limiter = RedisRateLimiter(store, requests=10, window_seconds=10)

        await limiter.admit("ratelimit:ip:a")

        assert 0 < await store.pttl("ratelimit:ip:a") <= 10_000

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, store):
        limiter = RedisRateLimiter(store, requests=1, window_seconds=10)

        assert await limiter.admit("ratelimit:ip:a") is True
        assert await limiter.admit("ratelimit:ip:a") is False
        assert await limiter.admit("ratelimit:ip:b") is True


class TestCountersOnStore:

    @pytest.mark.asyncio
    async def test_increment_does_not_renew_ttl(self, store):
        aggregator = AttackAggregator(store, window_seconds=60)
        await aggregator.record_passed()
        await store.expire("attack:total", 5)

        counters = await aggregator.record_passed()

        assert counters == AttackCounters(total=2, blocked=0)
        assert 0 < await store.ttl("attack:total") <= 5

    @pytest.mark.asyncio
    async def test_first_increment_arms_window(self, store):
        aggregator = AttackAggregator(store, window_seconds=60)

        await aggregator.record_blocked()
        counters = await aggregator.record_passed()

        assert counters == AttackCounters(total=1, blocked=1)
        assert 0 < await store.ttl("attack:blocked") <= 60
        assert 0 < await store.ttl("attack:total") <= 60

    @pytest.mark.asyncio
    async def test_alert_flag_claimed_once_per_window(self, store):
        channel = RecordingChannel()
        notifier = AttackNotifier(store, channel, threshold=10, window_seconds=60)
        counters = AttackCounters(total=11, blocked=0)

        results = await asyncio.gather(*(notifier.maybe_notify(counters) for _ in range(5)))

        assert results.count(True) == 1
        assert len(channel.messages) == 1
        assert 0 < await store.ttl("attack:notification_sent") <= 60
