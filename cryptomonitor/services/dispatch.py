"""
Dispatch loop: reacts to new-block notifications, scans one block at a time
and hands the results to the notification sinks.

New-block signals only fill a single pending slot. The consumer task always
re-reads the chain head before scanning, so any number of signals received
during a scan collapse into one rescan at the latest height.

Per block, events are delivered in block order (on_event callback, then each
sink's notify) and the block summary is sent to every sink afterwards. Sinks
are fed through one queue and worker task each, so scanning never waits on a
slow sink.
"""

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from cryptomonitor.core.blockchain import ChainReader, network_name
from cryptomonitor.core.errors import ChainConnectionError, SinkError
from cryptomonitor.core.models import BlockScanResult, ClassifiedTransaction
from cryptomonitor.services.block_scanner import BlockScanner
from cryptomonitor.services.notification_service import Notifier

EventCallback = Callable[[ClassifiedTransaction], Any]


class LoopState(str, Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    WATCHING = "watching"
    SCANNING = "scanning"
    STOPPED = "stopped"


class DispatchLoop:
    """Runs the watch loop for one chain reader"""

    def __init__(
        self,
        reader: ChainReader,
        scanner: BlockScanner,
        notifiers: Sequence[Notifier] = (),
        logger: Optional[Any] = None,
    ):
        self.reader = reader
        self.scanner = scanner
        self.notifiers = list(notifiers)
        self.logger = logger or structlog.get_logger().bind(component="dispatch_loop")

        self.state = LoopState.IDLE
        self.last_scanned_block: Optional[int] = None
        self._on_event: Optional[EventCallback] = None
        self._pending: Optional[int] = None
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()
        self._sink_queues: List[asyncio.Queue] = []
        self._sink_workers: List[asyncio.Task] = []
        self._counters = {
            "blocks_scanned": 0,
            "matches_delivered": 0,
            "blocks_unavailable": 0,
            "transactions_skipped": 0,
            "sink_failures": 0,
        }

    @property
    def is_running(self) -> bool:
        return self.state in (LoopState.WATCHING, LoopState.SCANNING)

    async def start(self, on_event: Optional[EventCallback] = None):
        """Probe the node, subscribe to new blocks and start the consumer task"""
        if self.state is not LoopState.IDLE:
            raise RuntimeError(f"Cannot start dispatch loop in state {self.state.value}")

        self.logger.info("Connecting to chain node")
        try:
            height = await self.reader.get_block_number()
        except Exception as e:
            self.logger.error("Chain node unreachable", error=str(e))
            raise ChainConnectionError(f"Chain node unreachable: {e}") from e

        if self.state is LoopState.STOPPED:
            return
        self.state = LoopState.CONNECTED
        self._on_event = on_event
        chain_id = await self._chain_id()
        self.logger.info(
            "Connected to chain node",
            block=height,
            chain_id=chain_id,
            network=network_name(chain_id),
        )

        await self.reader.subscribe_new_blocks(self._on_new_block)
        if self.state is LoopState.STOPPED:
            await self.reader.unsubscribe()
            return

        self.state = LoopState.WATCHING
        self._task = asyncio.create_task(self._run())
        self.logger.info("Watching for new blocks", sinks=len(self.notifiers))

    async def _chain_id(self) -> Optional[int]:
        # Not part of the ChainReader contract, only logged when available
        get_chain_id = getattr(self.reader, "get_chain_id", None)
        if get_chain_id is None:
            return None
        try:
            return await get_chain_id()
        except Exception as e:
            self.logger.warning("Failed to read chain id", error=str(e))
            return None

    async def stop(self):
        """
        Stop watching. An in-flight scan is allowed to finish and is delivered,
        and queued sink deliveries are drained before this returns.
        """
        if self.state is LoopState.STOPPED:
            await self.wait_stopped()
            return

        previous = self.state
        self.state = LoopState.STOPPED
        self.logger.info("Stopping dispatch loop", previous_state=previous.value)

        if previous is not LoopState.IDLE:
            try:
                await self.reader.unsubscribe()
            except Exception as e:
                self.logger.warning("Failed to unsubscribe from new blocks", error=str(e))

        self._wakeup.set()
        if self._task and self._task is not asyncio.current_task():
            await self._task

        await self._close_sinks()
        self._stopped.set()
        self.logger.info("Dispatch loop stopped", **self._counters)

    async def wait_stopped(self):
        """Block until stop() has finished"""
        await self._stopped.wait()

    def _on_new_block(self, block_number: int):
        if self.state is LoopState.STOPPED:
            return
        if self._pending is None or block_number > self._pending:
            self._pending = block_number
        self._wakeup.set()

    async def _run(self):
        while self.state is not LoopState.STOPPED:
            await self._wakeup.wait()
            self._wakeup.clear()
            if self.state is LoopState.STOPPED:
                break

            signalled, self._pending = self._pending, None
            try:
                await self._process(signalled)
            except Exception as e:
                self.logger.error("Error in dispatch loop", block=signalled, error=str(e))
            finally:
                if self.state is LoopState.SCANNING:
                    self.state = LoopState.WATCHING

    async def _latest_height(self, signalled: Optional[int]) -> Optional[int]:
        try:
            return await self.reader.get_block_number()
        except Exception as e:
            self.logger.warning("Failed to read chain head, using signalled block", block=signalled, error=str(e))
            return signalled

    async def _process(self, signalled: Optional[int]):
        height = await self._latest_height(signalled)
        if height is None:
            return
        if self.last_scanned_block is not None and height <= self.last_scanned_block:
            self.logger.debug("Block already scanned", block=height)
            return

        if self.state is LoopState.WATCHING:
            self.state = LoopState.SCANNING

        result = await self.scanner.scan(height)
        self._record(result)
        await self.deliver(result)

    def _record(self, result: BlockScanResult):
        self._counters["blocks_scanned"] += 1
        self._counters["transactions_skipped"] += result.skipped_transactions
        if result.available:
            self.last_scanned_block = result.block_number
        else:
            self._counters["blocks_unavailable"] += 1

    async def deliver(self, result: BlockScanResult):
        """
        Hand one block's events to the callback and sinks, then the summary.

        The on_event callback runs inline. Sink calls are queued on a worker
        per sink so a slow sink never holds up scanning; each worker keeps
        block order for its sink.
        """
        if not result.available:
            return
        self._start_sink_workers()

        for event in result.transactions:
            if self._on_event is not None:
                await self._call_sink("on_event", self._on_event, event)
            for sink, queue in zip(self.notifiers, self._sink_queues):
                queue.put_nowait((sink.notify, (event,)))
            self._counters["matches_delivered"] += 1

        if result.transactions:
            self.logger.info(
                "Watched transactions detected",
                block=result.block_number,
                matches=result.match_count,
            )

        for sink, queue in zip(self.notifiers, self._sink_queues):
            queue.put_nowait((sink.block_summary, (result.block_number, result.match_count)))

    async def flush(self):
        """Wait until every queued sink call has been made"""
        await asyncio.gather(*(queue.join() for queue in self._sink_queues))

    def _start_sink_workers(self):
        if self._sink_workers:
            return
        for sink in self.notifiers:
            queue: asyncio.Queue = asyncio.Queue()
            self._sink_queues.append(queue)
            self._sink_workers.append(asyncio.create_task(self._sink_worker(sink, queue)))

    async def _sink_worker(self, sink: Notifier, queue: asyncio.Queue):
        name = type(sink).__name__
        while True:
            method, args = await queue.get()
            try:
                await self._call_sink(name, method, *args)
            finally:
                queue.task_done()

    async def _close_sinks(self):
        await self.flush()
        for worker in self._sink_workers:
            worker.cancel()
        await asyncio.gather(*self._sink_workers, return_exceptions=True)
        self._sink_workers = []
        self._sink_queues = []

    async def _call_sink(self, name: str, method: Callable[..., Any], *args):
        try:
            outcome = method(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            error = e if isinstance(e, SinkError) else SinkError(name, str(e))
            self._counters["sink_failures"] += 1
            self.logger.error("Notification delivery failed", sink=name, error=str(error))

    def stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "last_scanned_block": self.last_scanned_block,
            **self._counters,
        }
