"""
Tests for console and Discord notification sinks.
"""

import io
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from rich.console import Console

from cryptomonitor.core.errors import ConfigError, SinkError
from cryptomonitor.core.formatter import normalize
from cryptomonitor.core.models import Direction
from cryptomonitor.services.notification_service import (
    ConsoleNotifier,
    DiscordNotifier,
    Notifier,
    build_notifiers,
    startup_message,
)

from tests.conftest import STRANGER_1, WATCHED_A, WATCHED_B, make_tx

WEBHOOK_URL = "https://discord.com/api/webhooks/123/abc"


def make_event(sender=STRANGER_1, recipient=WATCHED_A, direction=Direction.INBOUND):
    tx = make_tx("0x" + "ab" * 32, sender, recipient, value=1500000000000000000, block_number=12345)
    return normalize(tx, direction)


def make_settings(**overrides):
    values = {
        "notification_type": "console",
        "discord_webhook_url": None,
        "native_symbol": "ETH",
        "show_empty_blocks": False,
        "console_plain": False,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def console_notifier(output, watch_set):
    console = Console(file=output, width=100, color_system=None)
    return ConsoleNotifier(watch_set, console=console)


@pytest.fixture
def webhook_cls():
    with patch("cryptomonitor.services.notification_service.AsyncDiscordWebhook") as cls:
        cls.return_value.execute = AsyncMock(return_value=MagicMock(status_code=204, text=""))
        yield cls


@pytest.fixture
def discord_notifier():
    rate_limiter = MagicMock()
    rate_limiter.acquire = AsyncMock()
    return DiscordNotifier(WEBHOOK_URL, rate_limiter=rate_limiter)


# ============================================================
# CONSOLE
# ============================================================

class TestConsoleNotifier:

    def test_satisfies_notifier_protocol(self, console_notifier):
        assert isinstance(console_notifier, Notifier)

    def test_renders_transaction_box(self, console_notifier, output):
        console_notifier.notify(make_event())
        text = output.getvalue()

        assert "Incoming transfer" in text
        assert "0xabababab...abababab" in text
        assert "1.5 ETH" in text
        assert "0xd8dA...6045 (watched)" in text
        assert "12,345" in text

    def test_contract_creation_recipient(self, console_notifier, output):
        console_notifier.notify(make_event(WATCHED_B, None, Direction.OUTBOUND))
        text = output.getvalue()

        assert "Outgoing transfer" in text
        assert "Contract creation" in text

    def test_summary_for_matches(self, console_notifier, output):
        console_notifier.block_summary(12345, 2)
        assert "Block #12,345 - 2 matching transaction(s)" in output.getvalue()

    def test_empty_block_summary_suppressed_by_default(self, console_notifier, output):
        console_notifier.block_summary(12345, 0)
        assert output.getvalue() == ""

    def test_empty_block_summary_when_enabled(self, output, watch_set):
        console = Console(file=output, width=100, color_system=None)
        notifier = ConsoleNotifier(watch_set, show_empty_blocks=True, console=console)

        notifier.block_summary(7, 0)

        assert "Block #7 - 0 matching transaction(s)" in output.getvalue()

    def test_plain_mode_prints_text_block(self, output, watch_set):
        console = Console(file=output, width=100, color_system=None)
        notifier = ConsoleNotifier(watch_set, console=console, plain=True)

        notifier.notify(make_event(WATCHED_B, None, Direction.OUTBOUND))
        text = output.getvalue()

        assert "Outgoing transfer detected" in text
        assert "Amount: 1.5 ETH" in text
        assert "To: Contract creation" in text
        assert "Block: 12,345" in text
        assert "╭" not in text

    def test_disabled_notifier_prints_nothing(self, console_notifier, output):
        console_notifier.disable()
        console_notifier.notify(make_event())
        console_notifier.send_message("hello")

        assert not console_notifier.is_enabled()
        assert output.getvalue() == ""


# ============================================================
# DISCORD
# ============================================================

class TestDiscordNotifier:

    @pytest.mark.asyncio
    async def test_notify_posts_embed(self, discord_notifier, webhook_cls):
        await discord_notifier.notify(make_event())

        webhook_cls.assert_called_once()
        assert webhook_cls.call_args.kwargs["url"] == WEBHOOK_URL
        embed = webhook_cls.return_value.add_embed.call_args.args[0]
        assert "Incoming transfer" in embed.title
        fields = {f["name"]: f["value"] for f in embed.fields}
        assert fields["Amount"] == "1.5 ETH"
        assert fields["Block"] == "12,345"
        assert fields["To"] == f"`{WATCHED_A}`"
        discord_notifier.rate_limiter.acquire.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_contract_creation_field(self, discord_notifier, webhook_cls):
        await discord_notifier.notify(make_event(WATCHED_B, None, Direction.OUTBOUND))

        embed = webhook_cls.return_value.add_embed.call_args.args[0]
        fields = {f["name"]: f["value"] for f in embed.fields}
        assert fields["To"] == "Contract creation"

    @pytest.mark.asyncio
    async def test_error_status_raises_sink_error(self, discord_notifier, webhook_cls):
        webhook_cls.return_value.execute.return_value = MagicMock(status_code=500, text="boom")

        with pytest.raises(SinkError, match="500"):
            await discord_notifier.notify(make_event())

    @pytest.mark.asyncio
    async def test_summary_skips_empty_blocks(self, discord_notifier, webhook_cls):
        await discord_notifier.block_summary(100, 0)
        webhook_cls.assert_not_called()

        await discord_notifier.block_summary(100, 3)
        assert "3 matching transaction(s)" in webhook_cls.call_args.kwargs["content"]

    @pytest.mark.asyncio
    async def test_disabled_notifier_does_not_post(self, discord_notifier, webhook_cls):
        discord_notifier.enabled = False

        await discord_notifier.notify(make_event())
        await discord_notifier.send_message("hello")

        webhook_cls.assert_not_called()


# ============================================================
# FACTORY
# ============================================================

class TestBuildNotifiers:

    def test_console(self, watch_set):
        notifiers = build_notifiers(make_settings(show_empty_blocks=True), watch_set)

        assert len(notifiers) == 1
        assert isinstance(notifiers[0], ConsoleNotifier)
        assert notifiers[0].show_empty_blocks
        assert not notifiers[0].plain

    def test_console_plain(self, watch_set):
        notifiers = build_notifiers(make_settings(console_plain=True), watch_set)
        assert notifiers[0].plain

    def test_discord(self, watch_set):
        notifiers = build_notifiers(
            make_settings(notification_type="discord", discord_webhook_url=WEBHOOK_URL), watch_set,
        )
        assert isinstance(notifiers[0], DiscordNotifier)

    def test_discord_without_url(self, watch_set):
        with pytest.raises(ConfigError):
            build_notifiers(make_settings(notification_type="discord"), watch_set)

    def test_unknown_type(self, watch_set):
        with pytest.raises(ConfigError, match="sms"):
            build_notifiers(make_settings(notification_type="sms"), watch_set)

    def test_startup_message(self, watch_set):
        assert "watching 2 address(es)" in startup_message(watch_set)
