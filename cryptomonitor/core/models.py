from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from cryptomonitor.core.errors import BlockUnavailable, MonitorError, TransactionFetchError


class Direction(str, Enum):
    """Direction of a transaction relative to the watch-list"""
    INBOUND = "in"
    OUTBOUND = "out"
    SELF_TRANSFER = "self"


@dataclass(frozen=True)
class Block:
    number: int
    timestamp: int  # unix seconds
    transactions: Tuple[str, ...] = ()  # hashes, in block order


@dataclass(frozen=True)
class RawTransaction:
    """Transaction as read from the chain; amounts in wei"""
    hash: str
    sender: str
    recipient: Optional[str]  # None for contract creation
    value: int
    gas_limit: int
    gas_price: Optional[int] = None
    block_number: Optional[int] = None
    timestamp: Optional[int] = None

    @property
    def is_contract_creation(self) -> bool:
        return self.recipient is None


@dataclass(frozen=True)
class ClassifiedTransaction:
    """A watched transaction ready for delivery to notification sinks"""
    hash: str
    sender: str
    recipient: Optional[str]
    value: int
    value_display: str
    gas_price: Optional[int]
    gas_price_display: str
    gas_limit: int
    block_number: Optional[int]
    timestamp: Optional[int]
    direction: Direction

    @property
    def is_contract_creation(self) -> bool:
        return self.recipient is None


@dataclass(frozen=True)
class BlockScanResult:
    block_number: int
    transactions: Tuple[ClassifiedTransaction, ...] = ()
    timestamp: Optional[int] = None
    transaction_count: int = 0
    errors: Tuple[MonitorError, ...] = field(default=(), compare=False)

    @property
    def match_count(self) -> int:
        return len(self.transactions)

    @property
    def available(self) -> bool:
        return not any(isinstance(e, BlockUnavailable) for e in self.errors)

    @property
    def skipped_transactions(self) -> int:
        return sum(1 for e in self.errors if isinstance(e, TransactionFetchError))
