from .addresses import WatchSet, normalize_address
from .blockchain import ChainReader, JsonRpcChainReader
from .classifier import classify, is_relevant
from .formatter import format_units, normalize
from .models import Block, BlockScanResult, ClassifiedTransaction, Direction, RawTransaction

__all__ = [
    "WatchSet",
    "normalize_address",
    "ChainReader",
    "JsonRpcChainReader",
    "classify",
    "is_relevant",
    "format_units",
    "normalize",
    "Block",
    "BlockScanResult",
    "ClassifiedTransaction",
    "Direction",
    "RawTransaction",
]
