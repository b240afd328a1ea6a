import asyncio
import inspect
import signal
import sys

import click
from rich.console import Console
from rich.table import Table

from cryptomonitor.config import Settings, load_settings
from cryptomonitor.core.addresses import WatchSet, is_valid_address, normalize_address
from cryptomonitor.core.blockchain import JsonRpcChainReader, network_name
from cryptomonitor.core.errors import ChainConnectionError, ConfigError, RPCError
from cryptomonitor.logging_config import configure_logging
from cryptomonitor.services.block_scanner import BlockScanner
from cryptomonitor.services.dispatch import DispatchLoop
from cryptomonitor.services.notification_service import build_notifiers, startup_message

console = Console()


def _fail(message: str):
    console.print(f"[red]✗ {message}[/red]")
    sys.exit(1)


def _load():
    """Load settings, watch list and logger, exiting on configuration errors"""
    try:
        settings = load_settings()
        watch_set = WatchSet.build(settings.watch_addresses)
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    logger = configure_logging(settings.log_level, settings.log_format)
    return settings, watch_set, logger


def _reader(settings: Settings, logger) -> JsonRpcChainReader:
    return JsonRpcChainReader(
        settings.rpc_urls,
        poll_interval=settings.poll_interval_seconds,
        timeout=settings.rpc_timeout_seconds,
        rate_limit=settings.rpc_rate_limit,
        logger=logger.bind(component="chain_reader"),
    )


def _scanner(reader, watch_set: WatchSet, settings: Settings, logger) -> BlockScanner:
    return BlockScanner(
        reader,
        watch_set,
        decimals=settings.native_decimals,
        fetch_concurrency=settings.fetch_concurrency,
        logger=logger.bind(component="block_scanner"),
    )


async def _maybe_await(outcome):
    if inspect.isawaitable(outcome):
        await outcome


@click.group()
def cli():
    """crypto-monitor - watch blockchain addresses for new transactions"""
    pass


@cli.command()
@click.option('--test-notify', is_flag=True, help='Send a test message through the configured sinks')
def monitor(test_notify: bool):
    """Start watching new blocks"""
    settings, watch_set, logger = _load()

    console.print("[bold green]🚀 Starting crypto-monitor[/bold green]")
    console.print(f"[cyan]Watching: {', '.join(watch_set.display(a) for a in watch_set)}[/cyan]")
    console.print(f"[cyan]RPC URL: {settings.masked_rpc_url()}[/cyan]")
    console.print(f"[cyan]Notifications: {settings.notification_type}[/cyan]")

    async def run_monitor():
        async with _reader(settings, logger) as reader:
            notifiers = build_notifiers(settings, watch_set)
            loop = DispatchLoop(
                reader,
                _scanner(reader, watch_set, settings, logger),
                notifiers,
                logger=logger.bind(component="dispatch_loop"),
            )

            if test_notify:
                for notifier in notifiers:
                    await _maybe_await(notifier.send_message(startup_message(watch_set)))

            await loop.start()
            console.print("[green]✓ Monitoring started[/green]")
            console.print("[dim]Press Ctrl+C to stop[/dim]")

            event_loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    event_loop.add_signal_handler(sig, lambda: asyncio.ensure_future(loop.stop()))
                except NotImplementedError:
                    pass

            try:
                await loop.wait_stopped()
            finally:
                await loop.stop()
                stats = loop.stats()
                console.print(
                    f"[green]✓ Monitoring stopped[/green] "
                    f"(blocks scanned: {stats['blocks_scanned']}, matches: {stats['matches_delivered']})"
                )

    try:
        asyncio.run(run_monitor())
    except ChainConnectionError as e:
        logger.error("Monitor failed", error=str(e))
        _fail(str(e))
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")


@cli.command()
def status():
    """Show chain node and watch list status"""
    settings, watch_set, logger = _load()

    async def show_status():
        async with _reader(settings, logger) as reader:
            chain_id = await reader.get_chain_id()
            head = await reader.get_block_number()
            return chain_id, head, reader.get_request_stats()

    try:
        chain_id, head, stats = asyncio.run(show_status())
    except RPCError as e:
        _fail(f"Chain node unreachable: {e}")

    table = Table(title="crypto-monitor Status", show_header=True)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")

    table.add_row("Network", network_name(chain_id))
    table.add_row("Chain ID", str(chain_id))
    table.add_row("Head Block", f"{head:,}")
    table.add_row("Watched Addresses", str(len(watch_set)))
    table.add_row("RPC Endpoints", ", ".join(settings.masked_rpc_url(url) for url in settings.rpc_urls))
    table.add_row("Notifications", settings.notification_type)
    table.add_row("RPC Success Rate", f"{stats['success_rate']}%")

    console.print(table)


@cli.command()
@click.argument('block_number', type=int)
def scan(block_number: int):
    """Scan a single block and report watched transactions"""
    settings, watch_set, logger = _load()

    async def run_scan():
        async with _reader(settings, logger) as reader:
            scanner = _scanner(reader, watch_set, settings, logger)
            loop = DispatchLoop(reader, scanner, build_notifiers(settings, watch_set), logger=logger)
            result = await scanner.scan(block_number)
            await loop.deliver(result)
            await loop.stop()
            return result

    result = asyncio.run(run_scan())

    if not result.available:
        _fail(f"Block {block_number} is not available")

    console.print(
        f"[cyan]Block #{block_number:,}: {result.transaction_count} transaction(s), "
        f"{result.match_count} match(es), {result.skipped_transactions} skipped[/cyan]"
    )


@cli.command()
@click.argument('address')
def check_address(address: str):
    """Check whether an address is on the watch list"""
    if not is_valid_address(address):
        console.print("[red]Invalid address format[/red]")
        sys.exit(1)

    _, watch_set, _ = _load()

    console.print(f"[cyan]Normalized: {normalize_address(address)}[/cyan]")
    if watch_set.contains(address):
        console.print(f"[green]✓ Address is watched[/green] (configured as {watch_set.display(address)})")
    else:
        console.print("[yellow]✗ Address is not on the watch list[/yellow]")


def main():
    """Main entry point"""
    cli()


if __name__ == "__main__":
    main()
