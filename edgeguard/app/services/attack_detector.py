"""Windowed attack detection counters stored in Redis.

Two counters share the detection window:

- ``attack:total`` counts requests that passed every check,
- ``attack:blocked`` counts requests denied by any check.

Each counter's TTL is armed by the first increment of a window with
``EXPIRE ... NX`` and never renewed, so the counter means "since the window
started" and drops back to zero once the TTL lapses.
"""

import asyncio
from typing import Any

from edgeguard.app.core.logging import get_logger
from edgeguard.app.core.store import STORE_EXCEPTIONS
from edgeguard.app.exceptions import StoreError
from edgeguard.app.services.models import AttackCounters

logger = get_logger(__name__)


class AttackAggregator:
    """Maintains the total/blocked counter pair for attack detection.

    Redis key format:
    - {prefix}:total - requests admitted in the current window
    - {prefix}:blocked - requests denied in the current window

    Increments are atomic; the read that follows ``record_passed`` is a
    separate round trip and may be slightly behind or ahead under load.
    """

    KEY_PREFIX = "attack"

    def __init__(
        self,
        redis_client: Any,
        window_seconds: int = 60,
        timeout: float = 3.0,
        key_prefix: str = KEY_PREFIX,
    ) -> None:
        self._redis = redis_client
        self.window_seconds = window_seconds
        self.timeout = timeout
        self.total_key = f"{key_prefix}:total"
        self.blocked_key = f"{key_prefix}:blocked"

    async def _increment(self, key: str) -> int:
        pipe = self._redis.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, self.window_seconds, nx=True)
        results = await asyncio.wait_for(pipe.execute(), timeout=self.timeout)
        return int(results[0])

    async def record_blocked(self) -> None:
        """Count one denied request in the current window."""
        try:
            await self._increment(self.blocked_key)
        except STORE_EXCEPTIONS as e:
            raise StoreError("record_blocked", repr(e)) from e

    async def record_passed(self) -> AttackCounters:
        """Count one admitted request and return both counters."""
        try:
            await self._increment(self.total_key)
            total, blocked = await asyncio.wait_for(
                self._redis.mget(self.total_key, self.blocked_key),
                timeout=self.timeout,
            )
        except STORE_EXCEPTIONS as e:
            raise StoreError("record_passed", repr(e)) from e

        # The counter can lapse between INCR and MGET; this request still counts.
        counters = AttackCounters(
            total=int(total) if total is not None else 1,
            blocked=int(blocked or 0),
        )
        logger.debug(f"Attack counters: total={counters.total} blocked={counters.blocked}")
        return counters
