from .block_scanner import BlockScanner
from .dispatch import DispatchLoop, LoopState
from .notification_service import ConsoleNotifier, DiscordNotifier, Notifier, build_notifiers

__all__ = [
    "BlockScanner",
    "DispatchLoop",
    "LoopState",
    "ConsoleNotifier",
    "DiscordNotifier",
    "Notifier",
    "build_notifiers",
]
