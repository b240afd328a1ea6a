import re
from typing import Dict, FrozenSet, Iterable, Iterator, Optional

from cryptomonitor.core.errors import ConfigError

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(address: str) -> str:
    """Canonical form used for every comparison (checksum casing dropped)"""
    return address.strip().lower()


def is_valid_address(address: str) -> bool:
    return bool(ADDRESS_PATTERN.match(address.strip()))


class WatchSet:
    """Immutable set of watched addresses, compared in normalized form"""

    __slots__ = ("_addresses", "_display")

    def __init__(self, display: Dict[str, str]):
        self._display = dict(display)
        self._addresses: FrozenSet[str] = frozenset(self._display)

    @classmethod
    def build(cls, addresses: Iterable[str]) -> "WatchSet":
        """
        Normalize and deduplicate the configured addresses.
        The first spelling seen for an address is kept for display.
        """
        display: Dict[str, str] = {}
        invalid = []

        for raw in addresses:
            if raw is None:
                continue
            address = raw.strip()
            if not address:
                continue
            if not is_valid_address(address):
                invalid.append(address)
                continue
            display.setdefault(normalize_address(address), address)

        if invalid:
            raise ConfigError(f"Invalid watch addresses: {', '.join(invalid)}")
        if not display:
            raise ConfigError("Watch list is empty")

        return cls(display)

    def contains(self, address: Optional[str]) -> bool:
        if not address:
            return False
        return normalize_address(address) in self._addresses

    def display(self, address: str) -> str:
        """Original spelling of a watched address, or the input unchanged"""
        return self._display.get(normalize_address(address), address)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and self.contains(address)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._addresses))

    def __len__(self) -> int:
        return len(self._addresses)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WatchSet):
            return NotImplemented
        return self._addresses == other._addresses

    def __hash__(self) -> int:
        return hash(self._addresses)

    def __repr__(self) -> str:
        return f"WatchSet({len(self._addresses)} addresses)"
