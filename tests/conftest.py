"""
Shared fixtures: an in-memory chain reader and recording notification sinks.
"""

import asyncio
from typing import Dict, List, Optional, Set

import pytest

from cryptomonitor.core.addresses import WatchSet
from cryptomonitor.core.errors import RPCError
from cryptomonitor.core.models import Block, RawTransaction

WATCHED_A = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
WATCHED_B = "0xAb5801a7D398351b8bE11C439e05C5B3259aeC9B"
STRANGER_1 = "0x1111111111111111111111111111111111111111"
STRANGER_2 = "0x2222222222222222222222222222222222222222"

ONE_ETH = 10 ** 18


def make_tx(
    tx_hash: str,
    sender: str,
    recipient: Optional[str],
    value: int = ONE_ETH,
    gas_price: Optional[int] = 20 * 10 ** 9,
    block_number: Optional[int] = None,
) -> RawTransaction:
    return RawTransaction(
        hash=tx_hash,
        sender=sender,
        recipient=recipient,
        value=value,
        gas_limit=21000,
        gas_price=gas_price,
        block_number=block_number,
    )


class FakeChainReader:
    """ChainReader backed by dictionaries, with hooks for failures and delays"""

    def __init__(self, height: int = 100):
        self.height = height
        self.blocks: Dict[int, Block] = {}
        self.transactions: Dict[str, RawTransaction] = {}
        self.failing_blocks: Set[int] = set()
        self.failing_transactions: Set[str] = set()
        self.block_gates: Dict[int, asyncio.Event] = {}
        self.tx_delays: Dict[str, float] = {}
        self.head_error: Optional[Exception] = None

        self.block_requests: List[int] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.callback = None
        self.unsubscribe_calls = 0

    def add_block(self, number: int, transactions: List[RawTransaction], timestamp: int = 1_700_000_000):
        for tx in transactions:
            self.transactions[tx.hash] = tx
        self.blocks[number] = Block(number, timestamp, tuple(tx.hash for tx in transactions))

    def emit(self, number: int):
        self.callback(number)

    async def get_block_number(self) -> int:
        if self.head_error is not None:
            raise self.head_error
        return self.height

    async def get_block(self, number: int, include_transactions: bool = True) -> Optional[Block]:
        self.block_requests.append(number)
        gate = self.block_gates.get(number)
        if gate is not None:
            await gate.wait()
        if number in self.failing_blocks:
            raise RPCError(f"node error for block {number}")
        return self.blocks.get(number)

    async def get_transaction(self, tx_hash: str) -> Optional[RawTransaction]:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.tx_delays.get(tx_hash, 0))
            if tx_hash in self.failing_transactions:
                raise RPCError(f"node error for {tx_hash}")
            return self.transactions.get(tx_hash)
        finally:
            self.in_flight -= 1

    async def subscribe_new_blocks(self, callback) -> None:
        self.callback = callback

    async def unsubscribe(self) -> None:
        self.unsubscribe_calls += 1
        self.callback = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None


class RecordingNotifier:
    """Synchronous sink that records every call in order"""

    def __init__(self):
        self.calls = []
        self.messages = []

    @property
    def events(self):
        return [args[0] for name, *args in self.calls if name == "notify"]

    @property
    def summaries(self):
        return [tuple(args) for name, *args in self.calls if name == "summary"]

    def notify(self, event):
        self.calls.append(("notify", event))

    def send_message(self, text):
        self.messages.append(text)

    def block_summary(self, block_number, match_count):
        self.calls.append(("summary", block_number, match_count))


class AsyncRecordingNotifier(RecordingNotifier):
    async def notify(self, event):
        await asyncio.sleep(0)
        super().notify(event)

    async def block_summary(self, block_number, match_count):
        await asyncio.sleep(0)
        super().block_summary(block_number, match_count)


class FailingNotifier:
    def notify(self, event):
        raise RuntimeError("sink is down")

    def send_message(self, text):
        raise RuntimeError("sink is down")

    async def block_summary(self, block_number, match_count):
        raise RuntimeError("sink is down")


async def wait_for(predicate, timeout: float = 2.0):
    """Poll until predicate() is true or fail the test"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def watch_set():
    return WatchSet.build([WATCHED_A, WATCHED_B])


@pytest.fixture
def reader():
    return FakeChainReader()
