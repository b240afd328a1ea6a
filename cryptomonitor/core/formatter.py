from datetime import datetime
from typing import Optional

from cryptomonitor.core.models import ClassifiedTransaction, Direction, RawTransaction

DEFAULT_DECIMALS = 18

DIRECTION_LABELS = {
    Direction.INBOUND: "Incoming transfer",
    Direction.OUTBOUND: "Outgoing transfer",
    Direction.SELF_TRANSFER: "Internal transfer",
}


def format_units(value: int, decimals: int = DEFAULT_DECIMALS) -> str:
    """
    Convert an integer amount in the smallest unit to a decimal string.

    Integer arithmetic only, so the result is exact for any magnitude:
    1500000000000000000 -> "1.5", 0 -> "0.0", 10**18 -> "1.0".
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"Amount must be an integer, got {type(value).__name__}")
    if decimals < 0:
        raise ValueError("decimals must be non-negative")

    sign = "-" if value < 0 else ""
    whole, fraction = divmod(abs(value), 10 ** decimals)

    fraction_str = str(fraction).rjust(decimals, "0").rstrip("0") if decimals else ""
    return f"{sign}{whole}.{fraction_str or '0'}"


def normalize(tx: RawTransaction, direction: Direction,
              decimals: int = DEFAULT_DECIMALS) -> ClassifiedTransaction:
    """Build the immutable event record for a relevant transaction"""
    gas_price = tx.gas_price if tx.gas_price is not None else 0
    return ClassifiedTransaction(
        hash=tx.hash,
        sender=tx.sender,
        recipient=tx.recipient,
        value=tx.value,
        value_display=format_units(tx.value, decimals),
        gas_price=tx.gas_price,
        gas_price_display=format_units(gas_price, decimals),
        gas_limit=tx.gas_limit,
        block_number=tx.block_number,
        timestamp=tx.timestamp,
        direction=direction,
    )


def format_address(address: Optional[str]) -> str:
    """Shorten an address for display: 0x1234...abcd"""
    if not address:
        return ""
    return f"{address[:6]}...{address[-4:]}"


def format_tx_hash(tx_hash: Optional[str]) -> str:
    if not tx_hash:
        return ""
    return f"{tx_hash[:10]}...{tx_hash[-8:]}"


def format_timestamp(timestamp: Optional[int]) -> str:
    if timestamp is None:
        return "unknown"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def describe_transaction(tx: ClassifiedTransaction, symbol: str = "ETH") -> str:
    """Plain-text summary of an event for text-only sinks"""
    recipient = format_address(tx.recipient) if tx.recipient else "Contract creation"
    block = f"{tx.block_number:,}" if tx.block_number is not None else "pending"
    lines = [
        f"{DIRECTION_LABELS[tx.direction]} detected",
        "-" * 50,
        f"Hash: {format_tx_hash(tx.hash)}",
        f"Amount: {tx.value_display} {symbol}",
        f"From: {format_address(tx.sender)}",
        f"To: {recipient}",
        f"Gas price: {tx.gas_price_display} {symbol}",
        f"Block: {block}",
        f"Time: {format_timestamp(tx.timestamp)}",
        "-" * 50,
    ]
    return "\n".join(lines)
