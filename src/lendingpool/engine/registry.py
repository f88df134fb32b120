"""Market Registry - Creation, update and lookup of per-asset markets."""

import logging
from dataclasses import replace
from typing import List, Optional, Tuple

from ..config.schema import AssetParams
from ..errors import (
    InvalidMarketParams,
    MarketAlreadyExists,
    MarketCapacityExceeded,
    Unauthorized,
)
from ..validation.rules import validate_market
from .interest import InterestRateEngine
from .positions import MAX_MARKETS
from .state import Asset, Market
from .storage import PoolStorage

logger = logging.getLogger(__name__)

# Every AssetParams field, in the order missing fields are reported.
# tests/test_registry.py fails if a schema field is added without being listed here.
ASSET_PARAM_FIELDS: Tuple[str, ...] = (
    "initial_borrow_rate",
    "max_loan_to_value",
    "reserve_factor",
    "maintenance_margin",
    "liquidation_bonus",
    "interest_rate_strategy",
)

# Fields an update may overwrite; the initial borrow rate only seeds a new market
UPDATABLE_FIELDS: Tuple[str, ...] = (
    "max_loan_to_value",
    "reserve_factor",
    "maintenance_margin",
    "liquidation_bonus",
    "interest_rate_strategy",
)

DEFAULT_LIMIT = 10
MAX_LIMIT = 30


def require_all_params(params: AssetParams) -> None:
    """
    Raises:
        InvalidMarketParams: Naming the first field left unset
    """
    for name in ASSET_PARAM_FIELDS:
        if getattr(params, name) is None:
            raise InvalidMarketParams(f"All params should be available during initialization: {name} missing", field=name)


class MarketRegistry:
    """Owner-gated creation and update of markets, plus their lookups."""

    def __init__(self, storage: PoolStorage, interest: InterestRateEngine):
        self.storage = storage
        self.interest = interest

    def require_owner(self, sender: str, action: str) -> None:
        if sender != self.storage.config.owner:
            logger.warning(
                "Unauthorized market change",
                extra={"event": "lending_pool.unauthorized", "action": action, "sender": sender},
            )
            raise Unauthorized()

    def create_market(self, sender: str, asset: Asset, params: AssetParams, now: int) -> Market:
        """
        Create a market for an asset.

        Args:
            sender: Caller address, must be the owner
            asset: Asset to list
            params: Complete market parameters
            now: Block time in seconds

        Returns:
            The new market

        Raises:
            Unauthorized: If sender is not the owner
            InvalidMarketParams: If a parameter is missing or violates a rule
            MarketAlreadyExists: If the asset is already listed
            MarketCapacityExceeded: If every bit-set slot is taken
        """
        self.require_owner(sender, "init_asset")
        require_all_params(params)

        if asset.reference in self.storage.markets:
            raise MarketAlreadyExists(f"Asset {asset.reference} is already initialized")

        index = self.storage.global_state.market_count
        if index >= MAX_MARKETS:
            raise MarketCapacityExceeded(f"Pool supports at most {MAX_MARKETS} markets")

        market = Market(
            index=index,
            asset_reference=asset.reference,
            asset_type=asset.asset_type,
            max_loan_to_value=params.max_loan_to_value,
            reserve_factor=params.reserve_factor,
            maintenance_margin=params.maintenance_margin,
            liquidation_bonus=params.liquidation_bonus,
            interest_rate_strategy=params.interest_rate_strategy,
            interests_last_updated=now,
            rates_last_updated=now,
            borrow_rate=params.initial_borrow_rate,
        )
        validate_market(market)

        self.storage.markets[asset.reference] = market
        self.storage.market_refs_by_index[index] = asset.reference
        self.storage.global_state.market_count = index + 1
        return market

    def update_market(self, sender: str, reference: str, params: AssetParams, now: int) -> Market:
        """
        Overlay the provided parameters on an existing market.

        The market is accrued first so interest up to `now` is charged under
        the old parameters; the merged result is validated as a whole and
        rates are refreshed under the new strategy.

        Raises:
            Unauthorized: If sender is not the owner
            MarketNotFound: If the asset has no market
            InvalidMarketParams: If the merged parameters violate a rule
        """
        self.require_owner(sender, "update_asset")
        market = self.storage.load_market(reference)
        self.interest.accrue(market, now)

        overrides = {name: getattr(params, name) for name in UPDATABLE_FIELDS if getattr(params, name) is not None}
        validate_market(replace(market, **overrides))

        for name, value in overrides.items():
            setattr(market, name, value)
        self.interest.update_interest_rates(market, now)
        return market

    def register_share_token(self, sender: str, reference: str) -> Market:
        """
        Record the share token contract of a market. The sender is the token
        contract itself, reporting back after instantiation.

        Raises:
            MarketNotFound: If the asset has no market
            Unauthorized: If the market already has a share token
        """
        market = self.storage.load_market(reference)
        if market.share_token_address:
            raise Unauthorized(f"Share token for {reference} is already registered")
        market.share_token_address = sender
        self.storage.market_refs_by_token[sender] = reference
        return market

    def markets_list(self, start_after: Optional[int] = None, limit: Optional[int] = None) -> List[Market]:
        """Markets ordered by dense index, after `start_after` if given."""
        limit = min(limit or DEFAULT_LIMIT, MAX_LIMIT)
        start = 0 if start_after is None else start_after + 1
        markets = []
        for index in range(start, self.storage.global_state.market_count):
            if len(markets) >= limit:
                break
            markets.append(self.storage.load_market_by_index(index))
        return markets
