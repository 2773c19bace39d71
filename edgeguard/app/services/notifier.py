"""One-shot attack alerts with per-window deduplication.

The dedup flag is claimed with a single ``SET key 1 NX EX window`` before the
message is sent, so concurrent requests that cross the threshold together
still produce at most one alert per detection window.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import httpx

from edgeguard.app.core.logging import get_logger
from edgeguard.app.core.store import STORE_EXCEPTIONS
from edgeguard.app.exceptions import NotificationError
from edgeguard.app.services.models import AttackCounters

logger = get_logger(__name__)


def format_attack_alert(counters: AttackCounters, window_seconds: int) -> str:
    """Compose the multi-line alert text (Telegram Markdown)."""
    strength = f"{counters.strength(window_seconds):.1f}"
    return (
        "🚨 *Attack detected on the site!* 🚨\n"
        "\n"
        f"- *Attack strength:* ~{strength} requests/sec\n"
        f"- *Total requests in {window_seconds} sec:* {counters.total}\n"
        f"- *Blocked (Geo/UA/RateLimit):* {counters.blocked}\n"
        f"- *Passed to the site:* {counters.passed}\n"
        "\n"
        "Automatic limiting measures are in effect."
    )


class NotificationChannel(ABC):
    """Outbound text message channel."""

    @abstractmethod
    async def send_message(self, text: str) -> bool:
        """Send ``text``.

        Returns:
            True when the message was handed to the channel, False when the
            channel is not configured and the message was skipped.

        Raises:
            NotificationError: If delivery failed.
        """

    async def aclose(self) -> None:
        return None


class TelegramChannel(NotificationChannel):
    """Telegram Bot API ``sendMessage`` channel."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        bot_token: str = "",
        chat_id: str = "",
        api_base: str = "https://api.telegram.org",
    ) -> None:
        self._http = http_client
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._api_base = api_base.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    async def send_message(self, text: str) -> bool:
        if not self.configured:
            logger.warning("Telegram credentials are not set. Cannot send notification.")
            return False

        url = f"{self._api_base}/bot{self._bot_token}/sendMessage"
        payload = {"chat_id": self._chat_id, "text": text, "parse_mode": "Markdown"}
        try:
            response = await self._http.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"Telegram API returned {e.response.status_code}",
                status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            # Never include the URL: it carries the bot token.
            raise NotificationError(f"Telegram request failed: {type(e).__name__}") from e
        return True

    async def aclose(self) -> None:
        await self._http.aclose()


class AttackNotifier:
    """Sends the attack alert once per detection window."""

    FLAG_KEY = "attack:notification_sent"

    def __init__(
        self,
        redis_client: Any,
        channel: NotificationChannel,
        threshold: int = 10000,
        window_seconds: int = 60,
        timeout: float = 3.0,
        flag_key: str = FLAG_KEY,
    ) -> None:
        self._redis = redis_client
        self.channel = channel
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.timeout = timeout
        self.flag_key = flag_key

    async def _claim_flag(self) -> bool:
        claimed = await asyncio.wait_for(
            self._redis.set(self.flag_key, "1", nx=True, ex=self.window_seconds),
            timeout=self.timeout,
        )
        return bool(claimed)

    async def maybe_notify(self, counters: AttackCounters) -> bool:
        """Send the alert if the threshold is exceeded and none was sent this window.

        Returns:
            True if an alert was delivered.
        """
        if counters.total <= self.threshold:
            return False

        try:
            if not await self._claim_flag():
                return False
        except STORE_EXCEPTIONS as e:
            logger.warning(f"Could not claim notification flag: {e!r}. Alert skipped.")
            return False

        message = format_attack_alert(counters, self.window_seconds)
        try:
            sent = await self.channel.send_message(message)
        except NotificationError as e:
            logger.error(f"Failed to send attack notification: {e}")
            return False

        if sent:
            logger.warning(
                "Attack alert sent",
                extra={
                    "total": counters.total,
                    "blocked": counters.blocked,
                    "threshold": self.threshold,
                },
            )
        return sent
