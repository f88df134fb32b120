"""Persisted entities of the lending pool.

Amounts are ints in the asset's smallest unit; rates, indices and risk
fractions are 18-digit Decimals (see fixed_point).

Scaled-balance semantics:
- debt_total_scaled: sum of every user's Debt.amount_scaled in the market
- collateral_total_scaled: sum of every user's scaled deposit in the market
- available_liquidity: pool cash in the asset, mirroring the host token balance
- real amount = scaled * index / SCALING_FACTOR, with the borrow index for
  debt and the liquidity index for deposits
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from .fixed_point import ONE, ZERO
from .positions import MarketBitSet

if TYPE_CHECKING:
    from ..config.schema import InterestRateStrategy


class AssetType(str, Enum):
    """How the host moves the asset: bank transfer or token contract call."""
    NATIVE = "native"
    TOKEN = "token"


@dataclass(frozen=True)
class Asset:
    """An asset the pool can list, identified by denom or token contract address."""
    reference: str
    asset_type: AssetType

    @classmethod
    def native(cls, denom: str) -> 'Asset':
        return cls(reference=denom, asset_type=AssetType.NATIVE)

    @classmethod
    def token(cls, contract_address: str) -> 'Asset':
        return cls(reference=contract_address, asset_type=AssetType.TOKEN)

    def __str__(self) -> str:
        return self.reference


@dataclass
class GlobalState:
    """Pool-wide counters."""
    market_count: int = 0


@dataclass
class Market:
    """Per-asset market state."""
    index: int  # Dense index, also the bit position in user bit-sets
    asset_reference: str
    asset_type: AssetType
    max_loan_to_value: Decimal
    reserve_factor: Decimal
    maintenance_margin: Decimal
    liquidation_bonus: Decimal
    interest_rate_strategy: "InterestRateStrategy"
    interests_last_updated: int  # Block time (seconds) of the last accrual
    rates_last_updated: int = 0  # Block time of the last borrow-rate recomputation
    borrow_rate: Decimal = ZERO  # Annual rate charged to borrowers
    liquidity_rate: Decimal = ZERO  # Annual gross rate on deposits, before the reserve factor
    borrow_index: Decimal = ONE
    liquidity_index: Decimal = ONE
    share_token_address: str = ""  # Token contract representing pool shares, set by callback
    debt_total_scaled: int = 0
    collateral_total_scaled: int = 0
    available_liquidity: int = 0
    protocol_income_to_distribute: int = 0

    @property
    def asset(self) -> Asset:
        return Asset(reference=self.asset_reference, asset_type=self.asset_type)


@dataclass
class User:
    """Compact record of the markets a user borrows from and supplies collateral to."""
    borrowed_assets: MarketBitSet = field(default_factory=MarketBitSet)
    collateral_assets: MarketBitSet = field(default_factory=MarketBitSet)

    def is_empty(self) -> bool:
        return self.borrowed_assets.is_empty() and self.collateral_assets.is_empty()


@dataclass
class Debt:
    """Debt of one user in one market."""
    amount_scaled: int = 0
    # Debt extended against an off-ledger credit line rather than collateral
    uncollateralized: bool = False
