"""Shared fixtures: an in-memory async Redis double and a recording channel."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from edgeguard.app.exceptions import NotificationError
from edgeguard.app.services.notifier import NotificationChannel


class FakeClock:
    """Store-side clock used for key TTLs and the rate limit script."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockPipeline:
    """Queues commands and runs them in order on execute()."""

    def __init__(self, redis):
        self._redis = redis
        self._commands = []

    def incr(self, key):
        self._commands.append((self._redis.incr, (key,), {}))
        return self

    def expire(self, key, seconds, nx=False):
        self._commands.append((self._redis.expire, (key, seconds), {"nx": nx}))
        return self

    async def execute(self):
        results = []
        for func, args, kwargs in self._commands:
            results.append(await func(*args, **kwargs))
        self._commands = []
        return results


class RecordingChannel(NotificationChannel):
    """Notification channel that keeps sent messages in memory."""

    def __init__(self, fail: bool = False, configured: bool = True):
        self.messages: list[str] = []
        self.fail = fail
        self.configured = configured
        self.closed = False

    async def send_message(self, text: str) -> bool:
        if self.fail:
            raise NotificationError("channel down")
        if not self.configured:
            return False
        self.messages.append(text)
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_redis(clock):
    """Create a mock Redis client for testing.

    Supports the commands the filter uses: INCR, EXPIRE (NX), GET, MGET,
    SET (NX, EX), PING, pipelines and the sliding-window Lua script.
    """
    redis = MagicMock()
    redis.data = {}
    redis.ttls = {}
    redis.zsets = {}

    def _expire_if_due(key):
        if key in redis.ttls and redis.ttls[key] <= clock.now:
            redis.data.pop(key, None)
            redis.ttls.pop(key, None)

    async def mock_get(key):
        _expire_if_due(key)
        return redis.data.get(key)

    async def mock_mget(*keys):
        return [await mock_get(key) for key in keys]

    async def mock_incr(key):
        _expire_if_due(key)
        value = int(redis.data.get(key, "0")) + 1
        redis.data[key] = str(value)
        return value

    async def mock_expire(key, seconds, nx=False):
        _expire_if_due(key)
        if key not in redis.data:
            return False
        if nx and key in redis.ttls:
            return False
        redis.ttls[key] = clock.now + seconds
        return True

    async def mock_set(key, value, nx=False, ex=None):
        _expire_if_due(key)
        if nx and key in redis.data:
            return None
        redis.data[key] = str(value)
        if ex is not None:
            redis.ttls[key] = clock.now + ex
        else:
            redis.ttls.pop(key, None)
        return True

    async def mock_eval(script, num_keys, key, window_ms, limit, member):
        """Simulate SLIDING_WINDOW_SCRIPT on an in-memory sorted set.

        The script reads Redis TIME; here that is the fixture clock.
        """
        now_ms = int(clock.now * 1000)
        window_ms, limit = int(window_ms), int(limit)
        zset = redis.zsets.setdefault(key, {})
        for old in [m for m, score in zset.items() if score <= now_ms - window_ms]:
            del zset[old]

        allowed = 0
        if len(zset) < limit:
            zset[member] = now_ms
            allowed = 1

        reset_at = min(zset.values()) + window_ms if zset else now_ms + window_ms
        return [allowed, len(zset), reset_at, now_ms]

    redis.get = mock_get
    redis.mget = mock_mget
    redis.incr = mock_incr
    redis.expire = mock_expire
    redis.set = mock_set
    redis.eval = mock_eval
    redis.ping = AsyncMock(return_value=True)
    redis.aclose = AsyncMock()
    redis.pipeline = MagicMock(side_effect=lambda transaction=True: MockPipeline(redis))

    return redis


@pytest.fixture
def channel():
    return RecordingChannel()
