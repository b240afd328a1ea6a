from typing import Optional


class MonitorError(Exception):
    """Base exception for the transaction monitor"""
    pass


class ConfigError(MonitorError):
    """Invalid or missing configuration (fatal at startup)"""
    pass


class ChainConnectionError(MonitorError, ConnectionError):
    """The chain node could not be reached during the startup probe"""
    pass


class RPCError(MonitorError):
    """A JSON-RPC request failed on every configured endpoint"""
    pass


class BlockUnavailable(MonitorError):
    """Requested block is not visible on the node yet"""

    def __init__(self, block_number: int, reason: Optional[str] = None):
        self.block_number = block_number
        self.reason = reason
        message = f"Block {block_number} is not available"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TransactionFetchError(MonitorError):
    """A single transaction in a block could not be read"""

    def __init__(self, tx_hash: str, block_number: Optional[int] = None,
                 reason: Optional[str] = None):
        self.tx_hash = tx_hash
        self.block_number = block_number
        self.reason = reason
        message = f"Transaction {tx_hash} could not be fetched"
        if block_number is not None:
            message = f"{message} (block {block_number})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SinkError(MonitorError):
    """A notification sink failed to deliver an event"""

    def __init__(self, sink_name: str, reason: Optional[str] = None):
        self.sink_name = sink_name
        self.reason = reason
        message = f"Notification sink {sink_name} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
