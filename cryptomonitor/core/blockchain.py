"""
Chain reader contract and its JSON-RPC implementation.

The monitor only depends on the ChainReader protocol. JsonRpcChainReader speaks
the standard Ethereum JSON-RPC API over HTTP, tries the configured endpoints in
order, and emulates new-block notifications by polling eth_blockNumber.
"""

import asyncio
import itertools
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import aiohttp
import structlog
from aiohttp import ClientSession
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cryptomonitor.core.errors import RPCError
from cryptomonitor.core.models import Block, RawTransaction

NewBlockCallback = Callable[[int], None]

NETWORK_NAMES = {
    1: "mainnet",
    10: "optimism",
    56: "bsc",
    100: "gnosis",
    137: "polygon",
    8453: "base",
    42161: "arbitrum",
    17000: "holesky",
    11155111: "sepolia",
}


def network_name(chain_id: Optional[int]) -> str:
    if chain_id is None:
        return "unknown"
    return NETWORK_NAMES.get(chain_id, f"chain-{chain_id}")


@runtime_checkable
class ChainReader(Protocol):
    """Data source for blocks, transactions and new-block notifications"""

    async def get_block_number(self) -> int:
        ...

    async def get_block(self, number: int, include_transactions: bool = True) -> Optional[Block]:
        ...

    async def get_transaction(self, tx_hash: str) -> Optional[RawTransaction]:
        ...

    async def subscribe_new_blocks(self, callback: NewBlockCallback) -> None:
        ...

    async def unsubscribe(self) -> None:
        ...


class RateLimiter:
    """Token bucket rate limiter"""

    def __init__(self, rate: float):
        self.rate = rate
        self.tokens = rate
        self.last_update = time.monotonic()
        self.lock = asyncio.Lock()

    async def acquire(self):
        async with self.lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.tokens = min(self.rate, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens < 1:
                sleep_time = (1 - self.tokens) / self.rate
                await asyncio.sleep(sleep_time)
                self.tokens = 0
                self.last_update = time.monotonic()
            else:
                self.tokens -= 1


def _to_int(value: Any) -> Optional[int]:
    """Decode a JSON-RPC quantity (hex string) into an int"""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


def parse_transaction(data: Dict[str, Any]) -> RawTransaction:
    gas_price = data.get("gasPrice")
    if gas_price is None:
        gas_price = data.get("maxFeePerGas")

    return RawTransaction(
        hash=data["hash"],
        sender=data["from"],
        recipient=data.get("to") or None,
        value=_to_int(data.get("value")) or 0,
        gas_limit=_to_int(data.get("gas")) or 0,
        gas_price=_to_int(gas_price),
        block_number=_to_int(data.get("blockNumber")),
    )


def parse_block(data: Dict[str, Any]) -> Block:
    # Nodes return hashes or full objects depending on the request flag
    hashes = tuple(
        tx["hash"] if isinstance(tx, dict) else tx
        for tx in data.get("transactions") or []
    )
    return Block(
        number=_to_int(data["number"]),
        timestamp=_to_int(data.get("timestamp")) or 0,
        transactions=hashes,
    )


class RPCEndpoint:
    """A single JSON-RPC HTTP endpoint"""

    def __init__(self, session: ClientSession, url: str, rate_limit: Optional[float] = None):
        self.session = session
        self.url = url
        self.rate_limiter = RateLimiter(rate_limit) if rate_limit else None
        self._ids = itertools.count(1)

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        if self.rate_limiter:
            await self.rate_limiter.acquire()

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            async with self.session.post(self.url, json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise RPCError(f"HTTP {response.status} from RPC endpoint - {error_text[:200]}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise RPCError(f"Request failed: {e!r}") from e
        except RuntimeError as e:
            # aiohttp refuses requests on a closed session
            raise RPCError(f"Session unavailable: {e}") from e

        if not isinstance(data, dict):
            raise RPCError(f"Malformed JSON-RPC response for {method}")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RPCError(f"{method} returned an error: {message}")

        return data.get("result")


class JsonRpcChainReader:
    """Ethereum JSON-RPC chain reader with endpoint fallback"""

    def __init__(
        self,
        rpc_urls: Sequence[str],
        poll_interval: float = 4.0,
        timeout: Optional[float] = None,
        rate_limit: Optional[float] = None,
        logger: Optional[Any] = None,
    ):
        if not rpc_urls:
            raise ValueError("At least one RPC URL is required")
        self.rpc_urls = list(rpc_urls)
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.rate_limit = rate_limit
        self.logger = logger or structlog.get_logger().bind(component="chain_reader")

        self.session: Optional[ClientSession] = None
        self.endpoints: List[RPCEndpoint] = []
        self.request_counts = {"successful": 0, "failed": 0, "fallbacks": 0}

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._callback: Optional[NewBlockCallback] = None
        self._head: Optional[int] = None

    async def initialize(self):
        """Open the HTTP session"""
        if self.session:
            return
        # timeout=None leaves requests unbounded unless the caller sets one
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            headers={"User-Agent": "crypto-monitor/0.1", "Content-Type": "application/json"},
        )
        self.endpoints = [RPCEndpoint(self.session, url, self.rate_limit) for url in self.rpc_urls]
        self.logger.info("Chain reader initialized", endpoint_count=len(self.endpoints))

    async def close(self):
        """Stop polling and close the HTTP session"""
        await self.unsubscribe()
        if self.session:
            await self.session.close()
            self.session = None
            self.endpoints = []

    async def __aenter__(self) -> "JsonRpcChainReader":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _rpc(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Run a call against each endpoint in order until one succeeds"""
        if not self.endpoints:
            raise RuntimeError("Chain reader not initialized")

        for i, endpoint in enumerate(self.endpoints):
            try:
                result = await endpoint.call(method, params)
                if i > 0:
                    self.request_counts["fallbacks"] += 1
                    self.logger.info("Request served by fallback endpoint", method=method, endpoint=i + 1)
                self.request_counts["successful"] += 1
                return result
            except RPCError as e:
                self.logger.warning(
                    f"RPC endpoint failed ({i + 1}/{len(self.endpoints)}), trying next",
                    method=method,
                    error=str(e),
                )
                continue

        self.request_counts["failed"] += 1
        raise RPCError(f"All RPC endpoints failed for {method}")

    async def get_block_number(self) -> int:
        return _to_int(await self._rpc("eth_blockNumber"))

    async def get_chain_id(self) -> int:
        return _to_int(await self._rpc("eth_chainId"))

    async def get_block(self, number: int, include_transactions: bool = True) -> Optional[Block]:
        data = await self._rpc("eth_getBlockByNumber", [hex(number), include_transactions])
        if not data:
            return None
        return parse_block(data)

    async def get_transaction(self, tx_hash: str) -> Optional[RawTransaction]:
        data = await self._rpc("eth_getTransactionByHash", [tx_hash])
        if not data:
            return None
        return parse_transaction(data)

    async def subscribe_new_blocks(self, callback: NewBlockCallback) -> None:
        """Poll the chain head and report every new height to callback"""
        await self.unsubscribe()
        self._callback = callback
        self._head = None

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._poll_head,
            IntervalTrigger(seconds=self.poll_interval),
            id="poll_head",
            name="Poll chain head",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(),
        )
        self.scheduler.start()
        self.logger.info("Listening for new blocks", poll_interval=self.poll_interval)

    async def unsubscribe(self) -> None:
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            self.logger.info("Stopped listening for new blocks")
        self._callback = None

    async def _poll_head(self):
        try:
            height = await self.get_block_number()
        except (RPCError, RuntimeError) as e:
            # RuntimeError: the reader was closed while the job was pending
            self.logger.warning("Failed to poll chain head", error=str(e))
            return

        if self._head is None:
            self._head = height
            return
        if height <= self._head or self._callback is None:
            return

        for number in range(self._head + 1, height + 1):
            self.logger.debug("New block", block=number)
            try:
                self._callback(number)
            except Exception as e:
                self.logger.error("New block callback failed", block=number, error=str(e))
        self._head = height

    def get_request_stats(self) -> Dict[str, Any]:
        """Get RPC request statistics"""
        total = self.request_counts["successful"] + self.request_counts["failed"]
        success_rate = (self.request_counts["successful"] / total * 100) if total > 0 else 0

        return {
            "total_requests": total,
            "successful": self.request_counts["successful"],
            "failed": self.request_counts["failed"],
            "fallbacks": self.request_counts["fallbacks"],
            "success_rate": round(success_rate, 2),
            "endpoints": len(self.rpc_urls),
        }
