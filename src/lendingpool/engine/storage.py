"""Persisted state tree of the lending pool and its atomic transaction scope."""

import copy
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple

from ..config.schema import PoolConfig
from ..errors import MarketNotFound, UserRecordNotFound
from .state import Debt, GlobalState, Market, User

MarketUserKey = Tuple[str, str]

# Bounded by the market capacity, copied whole on entry
_SNAPSHOT_FIELDS = (
    "config",
    "global_state",
    "markets",
    "market_refs_by_index",
    "market_refs_by_token",
)

# Grow with the user set, journaled per key
_JOURNALED_FIELDS = (
    "users",
    "debts",
    "collateral",
    "uncollateralized_loan_limits",
)

_ABSENT = object()


class JournaledDict(dict):
    """
    Dict that remembers the entry value of every key touched while a journal
    is open, so a transaction can be undone without copying the whole map.

    Values are copied on first access because records are mutated in place.
    Only item access, get and pop are journaled.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._journal = None

    def begin(self) -> None:
        self._journal = {}

    def commit(self) -> None:
        self._journal = None

    def rollback(self) -> None:
        for key, value in self._journal.items():
            if value is _ABSENT:
                super().pop(key, None)
            else:
                super().__setitem__(key, value)
        self._journal = None

    def _record(self, key) -> None:
        journal = getattr(self, "_journal", None)
        if journal is None or key in journal:
            return
        value = super().get(key, _ABSENT)
        journal[key] = value if value is _ABSENT else copy.deepcopy(value)

    def __getitem__(self, key):
        self._record(key)
        return super().__getitem__(key)

    def get(self, key, default=None):
        self._record(key)
        return super().get(key, default)

    def __setitem__(self, key, value):
        self._record(key)
        super().__setitem__(key, value)

    def __delitem__(self, key):
        self._record(key)
        super().__delitem__(key)

    def pop(self, key, *default):
        self._record(key)
        return super().pop(key, *default)


class PoolStorage:
    """
    All pool state: singletons, the market map with its two secondary
    indexes, and the per-user maps.

    Keys:
    - markets: asset reference
    - market_refs_by_index: dense market index -> asset reference
    - market_refs_by_token: share token address -> asset reference
    - users: user address
    - debts, collateral, uncollateralized_loan_limits: (asset reference, user address)
    """

    def __init__(self, config: PoolConfig):
        self.config = config
        self.global_state = GlobalState()
        self.markets: Dict[str, Market] = {}
        self.market_refs_by_index: Dict[int, str] = {}
        self.market_refs_by_token: Dict[str, str] = {}
        self.users: Dict[str, User] = JournaledDict()
        self.debts: Dict[MarketUserKey, Debt] = JournaledDict()
        self.collateral: Dict[MarketUserKey, int] = JournaledDict()  # Scaled deposits
        self.uncollateralized_loan_limits: Dict[MarketUserKey, int] = JournaledDict()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator['PoolStorage']:
        """
        Run a block atomically: on any exception every state field is restored
        to its value on entry and the exception propagates.

        Market-level state is copied on entry. The per-user maps only keep the
        entry value of the keys the block touches.

        Nested scopes join the outermost one.
        """
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        snapshot = {name: copy.deepcopy(getattr(self, name)) for name in _SNAPSHOT_FIELDS}
        journals = [getattr(self, name) for name in _JOURNALED_FIELDS]
        for journal in journals:
            journal.begin()
        self._depth = 1
        try:
            yield self
        except BaseException:
            for name, value in snapshot.items():
                setattr(self, name, value)
            for journal in journals:
                journal.rollback()
            raise
        else:
            for journal in journals:
                journal.commit()
        finally:
            self._depth = 0

    # Markets

    def load_market(self, reference: str) -> Market:
        market = self.markets.get(reference)
        if market is None:
            raise MarketNotFound(f"No market for asset {reference}")
        return market

    def load_market_by_index(self, index: int) -> Market:
        reference = self.market_refs_by_index.get(index)
        if reference is None:
            raise MarketNotFound(f"No market with index {index}")
        return self.load_market(reference)

    def load_market_by_token(self, token_address: str) -> Market:
        reference = self.market_refs_by_token.get(token_address)
        if reference is None:
            raise MarketNotFound(f"No market for share token {token_address}")
        return self.load_market(reference)

    # Users

    def load_user(self, address: str) -> User:
        user = self.users.get(address)
        if user is None:
            raise UserRecordNotFound(f"No position record for user {address}")
        return user

    def user_or_new(self, address: str) -> User:
        """Return the user's record, creating an empty one if absent."""
        user = self.users.get(address)
        if user is None:
            user = User()
            self.users[address] = user
        return user

    def prune_user(self, address: str) -> None:
        """Drop the user's record once it holds no positions."""
        user = self.users.get(address)
        if user is not None and user.is_empty():
            del self.users[address]

    # Balances

    def debt(self, reference: str, address: str) -> Optional[Debt]:
        return self.debts.get((reference, address))

    def debt_scaled(self, reference: str, address: str) -> int:
        debt = self.debts.get((reference, address))
        return debt.amount_scaled if debt is not None else 0

    def collateral_scaled(self, reference: str, address: str) -> int:
        return self.collateral.get((reference, address), 0)

    def uncollateralized_loan_limit(self, reference: str, address: str) -> int:
        return self.uncollateralized_loan_limits.get((reference, address), 0)
