import asyncio
import time
from collections import deque
from datetime import datetime
from typing import Any, List, Optional, Protocol, runtime_checkable

import structlog
from discord_webhook import AsyncDiscordWebhook, DiscordEmbed
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cryptomonitor.core.addresses import WatchSet
from cryptomonitor.core.errors import ConfigError, SinkError
from cryptomonitor.core.formatter import (
    DIRECTION_LABELS,
    describe_transaction,
    format_address,
    format_timestamp,
    format_tx_hash,
)
from cryptomonitor.core.models import ClassifiedTransaction, Direction


@runtime_checkable
class Notifier(Protocol):
    """
    Capability interface of a notification sink.
    Methods may be plain functions or coroutines.
    """

    def notify(self, event: ClassifiedTransaction) -> Any:
        ...

    def send_message(self, text: str) -> Any:
        ...

    def block_summary(self, block_number: int, match_count: int) -> Any:
        ...


DIRECTION_STYLES = {
    Direction.INBOUND: ("green", "📥"),
    Direction.OUTBOUND: ("yellow", "📤"),
    Direction.SELF_TRANSFER: ("cyan", "🔄"),
}


class ConsoleNotifier:
    """Prints transaction events to the terminal"""

    def __init__(
        self,
        watch_set: Optional[WatchSet] = None,
        symbol: str = "ETH",
        show_empty_blocks: bool = False,
        console: Optional[Console] = None,
        enabled: bool = True,
        plain: bool = False,
    ):
        self.watch_set = watch_set
        self.symbol = symbol
        self.show_empty_blocks = show_empty_blocks
        self.plain = plain
        self.console = console or Console()
        self.enabled = enabled

    def is_enabled(self) -> bool:
        return self.enabled

    def enable(self):
        self.enabled = True

    def disable(self):
        self.enabled = False

    def _label(self, address: Optional[str]) -> str:
        if not address:
            return "Contract creation"
        if self.watch_set is not None and self.watch_set.contains(address):
            return f"{format_address(self.watch_set.display(address))} (watched)"
        return format_address(address)

    def render(self, event: ClassifiedTransaction) -> Panel:
        color, icon = DIRECTION_STYLES[event.direction]

        table = Table.grid(padding=(0, 2))
        table.add_column(style="bold")
        table.add_column()
        table.add_row("📝 Hash", format_tx_hash(event.hash))
        table.add_row("💰 Amount", f"{event.value_display} {self.symbol}")
        table.add_row("📤 From", self._label(event.sender))
        table.add_row("📥 To", self._label(event.recipient))
        table.add_row("⛽ Gas price", f"{event.gas_price_display} {self.symbol}")
        table.add_row("🔗 Block", f"{event.block_number:,}" if event.block_number is not None else "pending")
        table.add_row("🕐 Time", format_timestamp(event.timestamp))

        return Panel(
            table,
            title=f"{icon}  {DIRECTION_LABELS[event.direction]}",
            title_align="left",
            border_style=color,
            width=72,
        )

    def notify(self, event: ClassifiedTransaction):
        if not self.enabled:
            return
        if self.plain:
            self.console.print(describe_transaction(event, self.symbol), markup=False, highlight=False)
            return
        self.console.print(self.render(event))

    def send_message(self, text: str):
        if not self.enabled:
            return
        self.console.print(text)

    def block_summary(self, block_number: int, match_count: int):
        if not self.enabled:
            return
        if match_count == 0 and not self.show_empty_blocks:
            return
        self.console.print(
            f"[bold green]✓ Block #{block_number:,} - {match_count} matching transaction(s)[/bold green]"
        )


class RateLimiter:
    """Discord webhook rate limiter"""

    def __init__(self, max_requests_per_minute: int = 30):
        self.max_requests = max_requests_per_minute
        self.request_times = deque(maxlen=max_requests_per_minute)
        self.lock = asyncio.Lock()

    async def acquire(self):
        """Wait if necessary to respect rate limits"""
        async with self.lock:
            now = time.time()

            # Remove old requests outside the time window
            minute_ago = now - 60
            while self.request_times and self.request_times[0] < minute_ago:
                self.request_times.popleft()

            if len(self.request_times) >= self.max_requests:
                oldest_request = self.request_times[0]
                wait_time = 60 - (now - oldest_request) + 0.1
                if wait_time > 0:
                    await asyncio.sleep(wait_time)
                    now = time.time()

            self.request_times.append(now)


class DiscordNotifier:
    """Posts transaction events to a Discord webhook"""

    # Embed colours follow the console palette
    color_map = {
        Direction.INBOUND: 0x00ff00,
        Direction.OUTBOUND: 0xffff00,
        Direction.SELF_TRANSFER: 0x00ffff,
    }

    def __init__(
        self,
        webhook_url: str,
        symbol: str = "ETH",
        rate_limiter: Optional[RateLimiter] = None,
        enabled: bool = True,
        logger: Optional[Any] = None,
    ):
        self.webhook_url = webhook_url
        self.symbol = symbol
        self.rate_limiter = rate_limiter or RateLimiter()
        self.enabled = enabled
        self.logger = logger or structlog.get_logger().bind(component="discord_notifications")

    def _create_embed(self, event: ClassifiedTransaction) -> DiscordEmbed:
        icon = DIRECTION_STYLES[event.direction][1]
        embed = DiscordEmbed(
            title=f"{icon} {DIRECTION_LABELS[event.direction]}",
            description=f"`{event.hash}`",
            color=self.color_map[event.direction],
        )
        embed.add_embed_field(name="Amount", value=f"{event.value_display} {self.symbol}", inline=True)
        embed.add_embed_field(name="Gas Price", value=f"{event.gas_price_display} {self.symbol}", inline=True)
        embed.add_embed_field(
            name="Block",
            value=f"{event.block_number:,}" if event.block_number is not None else "pending",
            inline=True,
        )
        embed.add_embed_field(name="From", value=f"`{event.sender}`", inline=False)
        embed.add_embed_field(
            name="To",
            value=f"`{event.recipient}`" if event.recipient else "Contract creation",
            inline=False,
        )
        if event.timestamp is not None:
            embed.set_timestamp(event.timestamp)
        embed.set_footer(text="crypto-monitor")
        return embed

    async def _execute(self, webhook: AsyncDiscordWebhook):
        await self.rate_limiter.acquire()
        response = await webhook.execute()

        if response.status_code not in (200, 204):
            raise SinkError(
                self.__class__.__name__,
                f"Discord returned {response.status_code}: {response.text[:200]}",
            )

    async def notify(self, event: ClassifiedTransaction):
        if not self.enabled:
            return
        webhook = AsyncDiscordWebhook(url=self.webhook_url, rate_limit_retry=True)
        webhook.add_embed(self._create_embed(event))
        await self._execute(webhook)
        self.logger.info("Discord alert sent", tx_hash=event.hash, direction=event.direction.value)

    async def send_message(self, text: str):
        if not self.enabled:
            return
        webhook = AsyncDiscordWebhook(url=self.webhook_url, content=text, rate_limit_retry=True)
        await self._execute(webhook)

    async def block_summary(self, block_number: int, match_count: int):
        # Empty blocks would flood the channel
        if not self.enabled or match_count == 0:
            return
        await self.send_message(f"✓ Block #{block_number:,} - {match_count} matching transaction(s)")


def build_notifiers(settings, watch_set: Optional[WatchSet] = None) -> List[Notifier]:
    """Create the sinks selected by settings.notification_type"""
    if settings.notification_type == "console":
        return [ConsoleNotifier(
            watch_set,
            symbol=settings.native_symbol,
            show_empty_blocks=settings.show_empty_blocks,
            plain=settings.console_plain,
        )]

    if settings.notification_type == "discord":
        if not settings.discord_webhook_url:
            raise ConfigError("DISCORD_WEBHOOK_URL is required for discord notifications")
        return [DiscordNotifier(settings.discord_webhook_url, symbol=settings.native_symbol)]

    raise ConfigError(f"Unsupported notification type: {settings.notification_type}")


def startup_message(watch_set: WatchSet, started_at: Optional[datetime] = None) -> str:
    started_at = started_at or datetime.now()
    return (
        f"🚀 crypto-monitor started at {started_at.isoformat(timespec='seconds')}, "
        f"watching {len(watch_set)} address(es)"
    )
