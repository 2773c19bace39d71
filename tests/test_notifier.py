"""Tests for attack alerts and the Telegram channel."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
import redis

from edgeguard.app.exceptions import NotificationError
from edgeguard.app.services.models import AttackCounters
from edgeguard.app.services.notifier import (
    AttackNotifier,
    TelegramChannel,
    format_attack_alert,
)
from tests.conftest import RecordingChannel


@pytest.fixture
def notifier(mock_redis, channel):
    return AttackNotifier(mock_redis, channel, threshold=10000, window_seconds=60)


class TestFormatAttackAlert:

    def test_message_contents(self):
        message = format_attack_alert(AttackCounters(total=10001, blocked=1), 60)

        assert message.startswith("🚨")
        assert "~166.7 requests/sec" in message
        assert "Total requests in 60 sec:* 10001" in message
        assert "Blocked (Geo/UA/RateLimit):* 1" in message
        assert "Passed to the site:* 10000" in message

    def test_strength_has_one_decimal(self):
        message = format_attack_alert(AttackCounters(total=600, blocked=0), 60)
        assert "~10.0 requests/sec" in message


class TestAttackNotifier:

    @pytest.mark.asyncio
    async def test_below_threshold_sends_nothing(self, notifier, channel, mock_redis):
        assert await notifier.maybe_notify(AttackCounters(total=10000, blocked=0)) is False
        assert channel.messages == []
        assert "attack:notification_sent" not in mock_redis.data

    @pytest.mark.asyncio
    async def test_sends_once_per_window(self, notifier, channel, mock_redis, clock):
        counters = AttackCounters(total=10001, blocked=5)

        assert await notifier.maybe_notify(counters) is True
        assert await notifier.maybe_notify(AttackCounters(total=10500, blocked=5)) is False

        assert len(channel.messages) == 1
        assert "10001" in channel.messages[0]
        assert mock_redis.ttls["attack:notification_sent"] == clock.now + 60

    @pytest.mark.asyncio
    async def test_sends_again_in_next_window(self, notifier, channel, clock):
        await notifier.maybe_notify(AttackCounters(total=10001, blocked=0))
        clock.advance(60)
        await notifier.maybe_notify(AttackCounters(total=10002, blocked=0))

        assert len(channel.messages) == 2

    @pytest.mark.asyncio
    async def test_existing_flag_suppresses_alert(self, notifier, channel, mock_redis):
        await mock_redis.set("attack:notification_sent", "1", ex=60)

        assert await notifier.maybe_notify(AttackCounters(total=20000, blocked=0)) is False
        assert channel.messages == []

    @pytest.mark.asyncio
    async def test_delivery_failure_is_swallowed(self, mock_redis):
        notifier = AttackNotifier(mock_redis, RecordingChannel(fail=True), threshold=1)

        assert await notifier.maybe_notify(AttackCounters(total=2, blocked=0)) is False

    @pytest.mark.asyncio
    async def test_store_failure_skips_alert(self, notifier, channel, mock_redis):
        mock_redis.set = AsyncMock(side_effect=redis.TimeoutError("slow"))

        assert await notifier.maybe_notify(AttackCounters(total=20000, blocked=0)) is False
        assert channel.messages == []

    @pytest.mark.asyncio
    async def test_unconfigured_channel_reports_not_sent(self, mock_redis):
        notifier = AttackNotifier(mock_redis, RecordingChannel(configured=False), threshold=1)
        assert await notifier.maybe_notify(AttackCounters(total=2, blocked=0)) is False


class TestTelegramChannel:

    @pytest.mark.asyncio
    async def test_posts_markdown_message(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            channel = TelegramChannel(client, bot_token="123:abc", chat_id="-100")
            assert await channel.send_message("hello") is True

        assert len(requests) == 1
        assert str(requests[0].url) == "https://api.telegram.org/bot123:abc/sendMessage"
        assert json.loads(requests[0].content) == {
            "chat_id": "-100",
            "text": "hello",
            "parse_mode": "Markdown",
        }

    @pytest.mark.asyncio
    async def test_missing_credentials_skip_send(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            channel = TelegramChannel(client, bot_token="", chat_id="-100")
            assert channel.configured is False
            assert await channel.send_message("hello") is False

    @pytest.mark.asyncio
    async def test_error_status_raises_notification_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"ok": False})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            channel = TelegramChannel(client, bot_token="123:abc", chat_id="-100")
            with pytest.raises(NotificationError) as exc_info:
                await channel.send_message("hello")

        assert exc_info.value.status == 401
        assert "123:abc" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_raises_notification_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            channel = TelegramChannel(client, bot_token="123:abc", chat_id="-100")
            with pytest.raises(NotificationError):
                await channel.send_message("hello")
