"""User Position Tracker - Fixed-width membership sets of markets per user.

Bit i of a set means the user has an open position in the market with
dense index i. The width is a hard ceiling on the number of markets.
"""

from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from .state import User

MAX_MARKETS = 128


class MarketBitSet:
    """Set of market indices backed by a single bounded int."""

    __slots__ = ("_bits",)

    capacity = MAX_MARKETS

    def __init__(self, bits: int = 0):
        if bits < 0 or bits >= 1 << self.capacity:
            raise ValueError(f"Bit pattern does not fit in {self.capacity} bits: {bits}")
        self._bits = bits

    @property
    def bits(self) -> int:
        """Raw bit pattern."""
        return self._bits

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= self.capacity:
            raise IndexError(f"Market index {index} outside bit-set capacity {self.capacity}")

    def set(self, index: int) -> None:
        self._check_index(index)
        self._bits |= 1 << index

    def clear(self, index: int) -> None:
        self._check_index(index)
        self._bits &= ~(1 << index)

    def is_set(self, index: int) -> bool:
        self._check_index(index)
        return bool(self._bits >> index & 1)

    def is_empty(self) -> bool:
        return self._bits == 0

    def __iter__(self) -> Iterator[int]:
        # Iterates over a snapshot of the bits taken at the first step
        remaining = self._bits
        while remaining:
            lowest = remaining & -remaining
            yield lowest.bit_length() - 1
            remaining ^= lowest

    def __len__(self) -> int:
        return bin(self._bits).count("1")

    def __contains__(self, index: object) -> bool:
        return isinstance(index, int) and 0 <= index < self.capacity and self.is_set(index)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MarketBitSet):
            return NotImplemented
        return self._bits == other._bits

    def __repr__(self) -> str:
        return f"MarketBitSet({list(self)})"

    def __deepcopy__(self, memo) -> "MarketBitSet":
        return MarketBitSet(self._bits)


def set_borrowing(user: "User", index: int) -> None:
    user.borrowed_assets.set(index)


def clear_borrowing(user: "User", index: int) -> None:
    user.borrowed_assets.clear(index)


def set_collateral(user: "User", index: int) -> None:
    user.collateral_assets.set(index)


def clear_collateral(user: "User", index: int) -> None:
    user.collateral_assets.clear(index)


def iter_borrowed(user: "User") -> Iterator[int]:
    """Market indices the user currently borrows from, ascending."""
    return iter(user.borrowed_assets)


def iter_collateral(user: "User") -> Iterator[int]:
    """Market indices the user currently supplies collateral to, ascending."""
    return iter(user.collateral_assets)
