"""
Block scanner: turns one block into the ordered list of watched transactions.
Instead of polling each address, every new block is read once and its
transactions are matched against the in-memory watch set.
"""

import asyncio
import dataclasses
from typing import Any, List, Optional, Tuple

import structlog

from cryptomonitor.core.addresses import WatchSet
from cryptomonitor.core.blockchain import ChainReader
from cryptomonitor.core.classifier import classify, is_relevant
from cryptomonitor.core.errors import BlockUnavailable, MonitorError, TransactionFetchError
from cryptomonitor.core.formatter import DEFAULT_DECIMALS, normalize
from cryptomonitor.core.models import Block, BlockScanResult, ClassifiedTransaction, RawTransaction


class BlockScanner:
    """Scans blocks for transactions touching watched addresses"""

    def __init__(
        self,
        reader: ChainReader,
        watch_set: WatchSet,
        decimals: int = DEFAULT_DECIMALS,
        fetch_concurrency: int = 8,
        logger: Optional[Any] = None,
    ):
        if fetch_concurrency < 1:
            raise ValueError("fetch_concurrency must be at least 1")
        self.reader = reader
        self.watch_set = watch_set
        self.decimals = decimals
        self.fetch_concurrency = fetch_concurrency
        self.logger = logger or structlog.get_logger().bind(component="block_scanner")

    async def scan(self, block_number: int) -> BlockScanResult:
        """
        Scan a single block. Never raises for node-side problems: a missing
        block or unreadable transactions are recorded on the result instead.
        """
        try:
            block = await self.reader.get_block(block_number, include_transactions=True)
        except Exception as e:
            return self._unavailable(block_number, str(e))

        if block is None:
            return self._unavailable(block_number, "not found on node")

        if not block.transactions:
            self.logger.debug("Block has no transactions", block=block_number)
            return BlockScanResult(block_number=block_number, timestamp=block.timestamp)

        fetched, errors = await self._fetch_transactions(block)

        matches: List[ClassifiedTransaction] = []
        for tx in fetched:
            if tx is None or not is_relevant(tx, self.watch_set):
                continue
            direction = classify(tx, self.watch_set)
            matches.append(normalize(self._with_block(tx, block), direction, self.decimals))

        self.logger.debug(
            "Scanned block",
            block=block_number,
            tx_count=len(block.transactions),
            matches=len(matches),
            skipped=len(errors),
        )

        return BlockScanResult(
            block_number=block_number,
            transactions=tuple(matches),
            timestamp=block.timestamp,
            transaction_count=len(block.transactions),
            errors=tuple(errors),
        )

    async def _fetch_transactions(
        self, block: Block
    ) -> Tuple[List[Optional[RawTransaction]], List[MonitorError]]:
        """Fetch every transaction of the block concurrently, keeping block order"""
        semaphore = asyncio.Semaphore(self.fetch_concurrency)

        async def fetch(tx_hash: str) -> Optional[RawTransaction]:
            async with semaphore:
                return await self.reader.get_transaction(tx_hash)

        results = await asyncio.gather(
            *(fetch(tx_hash) for tx_hash in block.transactions),
            return_exceptions=True,
        )

        transactions: List[Optional[RawTransaction]] = []
        errors: List[MonitorError] = []
        for tx_hash, result in zip(block.transactions, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException) or result is None:
                reason = str(result) if isinstance(result, BaseException) else "not found on node"
                error = TransactionFetchError(tx_hash, block.number, reason)
                self.logger.warning(
                    "Skipping unreadable transaction",
                    block=block.number,
                    tx_hash=tx_hash,
                    error=reason,
                )
                errors.append(error)
                transactions.append(None)
                continue
            transactions.append(result)

        return transactions, errors

    def _with_block(self, tx: RawTransaction, block: Block) -> RawTransaction:
        # Transactions fetched by hash carry no timestamp; pending ones no block number
        return dataclasses.replace(
            tx,
            block_number=tx.block_number if tx.block_number is not None else block.number,
            timestamp=block.timestamp,
        )

    def _unavailable(self, block_number: int, reason: str) -> BlockScanResult:
        error = BlockUnavailable(block_number, reason)
        self.logger.warning("Block unavailable, skipping", block=block_number, error=reason)
        return BlockScanResult(block_number=block_number, errors=(error,))
