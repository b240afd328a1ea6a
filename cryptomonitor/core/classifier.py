"""
Relevance filtering and direction classification of block transactions.

Direction is decided against the watch-list as a whole: a transfer between two
different watched addresses is reported once, as a self transfer.
"""

from cryptomonitor.core.addresses import WatchSet
from cryptomonitor.core.models import Direction, RawTransaction


def is_relevant(tx: RawTransaction, watch: WatchSet) -> bool:
    """True if the sender or the recipient is watched"""
    if watch.contains(tx.sender):
        return True
    return tx.recipient is not None and watch.contains(tx.recipient)


def classify(tx: RawTransaction, watch: WatchSet) -> Direction:
    """Label a relevant transaction; only call this after is_relevant()"""
    sender_watched = watch.contains(tx.sender)
    recipient_watched = tx.recipient is not None and watch.contains(tx.recipient)

    if sender_watched and recipient_watched:
        return Direction.SELF_TRANSFER
    if recipient_watched:
        return Direction.INBOUND
    # Watched sender; includes contract creation
    return Direction.OUTBOUND
