"""Request admission pipeline.

Checks run cheapest first and the chain stops at the first deny:

    country -> identity -> rate_limit -> attack detection -> allow

A deny counts toward the blocked counter and returns immediately; only
admitted requests feed the total counter and the attack notifier.
"""

from typing import Any, Awaitable, Callable, Optional

from edgeguard.app.core.config import Settings, settings
from edgeguard.app.core.http_client import create_http_client
from edgeguard.app.core.logging import get_log_context, get_logger
from edgeguard.app.core.store import close_store, create_redis_client, ping_store
from edgeguard.app.exceptions import StoreError
from edgeguard.app.middleware.rate_limit import RateLimitBackend, RedisRateLimiter
from edgeguard.app.services.attack_detector import AttackAggregator
from edgeguard.app.services.classifier import StaticClassifier
from edgeguard.app.services.models import (
    ClientRequest,
    DenyReason,
    FilterDecision,
    FilterMode,
)
from edgeguard.app.services.notifier import AttackNotifier, TelegramChannel

logger = get_logger(__name__)

Stage = Callable[[ClientRequest], Awaitable[FilterDecision]]

RATE_LIMITED_MESSAGE = "Too many requests. Please try again later."


class EdgeFilterPipeline:
    """Runs the admission checks for one request at a time.

    The pipeline holds no per-request state; every counter, flag and rate
    limit window lives in the shared store, so one instance serves any
    number of concurrent requests.
    """

    def __init__(
        self,
        classifier: StaticClassifier,
        rate_limiter: Optional[RateLimitBackend] = None,
        aggregator: Optional[AttackAggregator] = None,
        notifier: Optional[AttackNotifier] = None,
        mode: FilterMode = FilterMode.ENFORCED,
        redis_client: Optional[Any] = None,
        store_timeout: float = 3.0,
    ) -> None:
        if mode is FilterMode.ENFORCED and None in (rate_limiter, aggregator, notifier):
            raise ValueError("Enforced mode requires a rate limiter, aggregator and notifier")

        self.classifier = classifier
        self.rate_limiter = rate_limiter
        self.aggregator = aggregator
        self.notifier = notifier
        self.mode = mode
        self._redis = redis_client
        self._store_timeout = store_timeout
        self._stages: tuple[tuple[str, Stage], ...] = (
            ("country", self._check_country),
            ("identity", self._check_identity),
            ("rate_limit", self._check_rate_limit),
        )

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self._stages)

    async def _check_country(self, request: ClientRequest) -> FilterDecision:
        return self.classifier.check_country(request.country)

    async def _check_identity(self, request: ClientRequest) -> FilterDecision:
        return self.classifier.check_identity(request.identity)

    async def _check_rate_limit(self, request: ClientRequest) -> FilterDecision:
        result = await self.rate_limiter.is_allowed(request.client_key)
        if not result.allowed:
            return FilterDecision.deny(
                DenyReason.RATE_LIMITED,
                429,
                RATE_LIMITED_MESSAGE,
                headers=result.headers(),
            )
        return FilterDecision.allow(headers=result.headers())

    async def evaluate(self, request: ClientRequest) -> FilterDecision:
        """Decide whether ``request`` may reach the application."""
        if self.mode is FilterMode.DISABLED:
            return FilterDecision.allow()

        headers: dict[str, str] = {}
        for name, stage in self._stages:
            decision = await stage(request)
            if not decision.allowed:
                logger.info(
                    f"Request denied by {name} check",
                    extra=get_log_context(
                        client_key=request.client_key,
                        country=request.country,
                        path=request.path,
                        reason=decision.reason.value,
                        status_code=decision.status_code,
                    ),
                )
                await self._record_blocked()
                return decision
            headers.update(decision.headers)

        await self._detect_attack()
        return FilterDecision.allow(headers)

    async def _record_blocked(self) -> None:
        try:
            await self.aggregator.record_blocked()
        except StoreError as e:
            logger.warning(f"{e}. Blocked request not counted.")

    async def _detect_attack(self) -> None:
        try:
            counters = await self.aggregator.record_passed()
        except StoreError as e:
            logger.warning(f"{e}. Attack detection skipped for this request.")
            return
        await self.notifier.maybe_notify(counters)

    async def startup(self) -> None:
        """Verify the store is reachable; fall back to fail-open if not."""
        if self.mode is not FilterMode.ENFORCED or self._redis is None:
            return
        if not await ping_store(self._redis, self._store_timeout):
            self.mode = FilterMode.DISABLED
            logger.warning(
                "Redis is unreachable. Edge filter runs in fail-open mode: "
                "every request is allowed and nothing is recorded.",
                extra={"mode": self.mode.value},
            )
            return
        logger.info("Edge filter enforcing", extra={"mode": self.mode.value, "stages": self.stage_names})

    async def aclose(self) -> None:
        """Release the store client and the notification channel."""
        if self.notifier is not None:
            await self.notifier.channel.aclose()
        await close_store(self._redis)


def build_pipeline(config: Optional[Settings] = None) -> EdgeFilterPipeline:
    """Assemble the pipeline from configuration.

    An empty ``redis_url`` selects ``FilterMode.DISABLED``.
    """
    config = config or settings
    classifier = StaticClassifier(config.blocked_countries, config.allowed_user_agents)

    redis_client = create_redis_client(config)
    if redis_client is None:
        logger.warning(
            "Redis environment variables not found. Key security features are disabled.",
            extra={"mode": FilterMode.DISABLED.value},
        )
        return EdgeFilterPipeline(classifier, mode=FilterMode.DISABLED)

    if not config.telegram_configured:
        logger.warning("Telegram credentials are not set. Attack alerts will not be delivered.")

    channel = TelegramChannel(
        create_http_client(timeout=config.notification_timeout),
        bot_token=config.telegram_bot_token,
        chat_id=config.telegram_chat_id,
        api_base=config.telegram_api_base,
    )
    return EdgeFilterPipeline(
        classifier,
        rate_limiter=RedisRateLimiter(
            redis_client,
            requests=config.rate_limit_requests,
            window_seconds=config.rate_limit_window_seconds,
            timeout=config.store_timeout,
            fail_closed=config.rate_limit_fail_closed,
        ),
        aggregator=AttackAggregator(
            redis_client,
            window_seconds=config.attack_window_seconds,
            timeout=config.store_timeout,
        ),
        notifier=AttackNotifier(
            redis_client,
            channel,
            threshold=config.attack_threshold,
            window_seconds=config.attack_window_seconds,
            timeout=config.store_timeout,
        ),
        mode=FilterMode.ENFORCED,
        redis_client=redis_client,
        store_timeout=config.store_timeout,
    )
