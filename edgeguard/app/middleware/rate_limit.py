"""Per-client sliding-window rate limiting backed by Redis.

The rate limiter keeps no state in the process: every window lives in a
Redis sorted set, so any number of filter instances can share one limit.
"""

import asyncio
import math
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import redis

from edgeguard.app.core.logging import get_logger
from edgeguard.app.services.redis_lua import SLIDING_WINDOW_SCRIPT

logger = get_logger(__name__)

@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_time: int
    retry_after: Optional[int] = None

    def headers(self) -> dict[str, str]:
        """Rate limit response headers for this result."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_time),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after or 1)
        return headers


class RateLimitBackend(ABC):
    """Abstract base class for rate limit backends."""

    @abstractmethod
    async def is_allowed(self, key: str) -> RateLimitResult:
        """Check if a request is allowed for the given key and consume capacity.

        Args:
            key: Rate limit key

        Returns:
            RateLimitResult with allowed status and metadata
        """

    async def admit(self, key: str) -> bool:
        """Admit or reject one request for ``key``."""
        result = await self.is_allowed(key)
        return result.allowed


class RedisRateLimiter(RateLimitBackend):
    """Redis-based distributed sliding-window rate limiter.

    Every request is a timestamp in a sorted set; the trim, count and insert
    run inside one Lua script so concurrent requests for the same key can
    never both take the last slot.
    """

    def __init__(
        self,
        redis_client: Any,
        requests: int = 10,
        window_seconds: int = 10,
        timeout: float = 3.0,
        fail_closed: bool = False,
    ):
        """Initialize Redis rate limiter.

        Args:
            redis_client: redis.asyncio client instance
            requests: Requests admitted per window for one key
            window_seconds: Length of the sliding window
            timeout: Upper bound for the store round trip, in seconds
            fail_closed: Deny instead of admit when Redis is unavailable
        """
        self._redis = redis_client
        self.requests = requests
        self.window_seconds = window_seconds
        self.timeout = timeout
        self.fail_closed = fail_closed

    async def is_allowed(self, key: str) -> RateLimitResult:
        """Check if request is allowed using the sliding window script.

        Timestamps come from the Redis clock, not this process.
        """
        window_ms = self.window_seconds * 1000
        member = uuid.uuid4().hex

        try:
            allowed, count, reset_at_ms, now_ms = await asyncio.wait_for(
                self._redis.eval(
                    SLIDING_WINDOW_SCRIPT,
                    1,
                    key,
                    window_ms,
                    self.requests,
                    member,
                ),
                timeout=self.timeout,
            )
        except redis.ConnectionError as e:
            logger.error(f"Redis connection failed: {e}")
            return self._handle_redis_failure("connection_error")
        except (redis.TimeoutError, asyncio.TimeoutError) as e:
            logger.warning(f"Redis timeout: {e!r}")
            return self._handle_redis_failure("timeout")
        except redis.RedisError as e:
            logger.error(f"Redis error: {e}")
            return self._handle_redis_failure("redis_error")

        reset_time = math.ceil(int(reset_at_ms) / 1000)
        if not int(allowed):
            retry_after = max(1, math.ceil((int(reset_at_ms) - int(now_ms)) / 1000))
            return RateLimitResult(
                allowed=False,
                limit=self.requests,
                remaining=0,
                reset_time=reset_time,
                retry_after=retry_after,
            )

        return RateLimitResult(
            allowed=True,
            limit=self.requests,
            remaining=max(0, self.requests - int(count)),
            reset_time=reset_time,
        )

    def _handle_redis_failure(self, error_type: str) -> RateLimitResult:
        """Handle Redis failure with the configured fail-open/fail-closed policy.

        Args:
            error_type: Type of error for logging purposes

        Returns:
            RateLimitResult based on fail_closed configuration
        """
        reset_time = int(time.time() + self.window_seconds)

        if self.fail_closed:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {error_type}. "
                "Request denied."
            )
            return RateLimitResult(
                allowed=False,
                limit=self.requests,
                remaining=0,
                reset_time=reset_time,
                retry_after=self.window_seconds,
            )

        logger.warning(
            f"Rate limiting fail-open triggered due to {error_type}. "
            "Request allowed without rate limit check."
        )
        return RateLimitResult(
            allowed=True,
            limit=self.requests,
            remaining=1,
            reset_time=reset_time,
        )
