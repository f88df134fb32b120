"""Pydantic schema for pool configuration and market parameters."""

import hashlib
import json
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..engine.state import AssetType


class LinearInterestRate(BaseModel):
    """Kinked linear curve: gentle slope up to the optimal utilization, steep after."""
    kind: Literal["linear"] = "linear"
    optimal_utilization_rate: Decimal = Field(ge=0, description="Utilization at the kink")
    base: Decimal = Field(ge=0, description="Borrow rate at zero utilization")
    slope_1: Decimal = Field(ge=0, description="Rate added between zero and optimal utilization")
    slope_2: Decimal = Field(ge=0, description="Rate added between optimal and full utilization")


class DynamicInterestRate(BaseModel):
    """Proportional controller that steers the borrow rate towards the optimal utilization."""
    kind: Literal["dynamic"] = "dynamic"
    min_borrow_rate: Decimal = Field(ge=0, description="Lower clamp for the borrow rate")
    max_borrow_rate: Decimal = Field(ge=0, description="Upper clamp for the borrow rate")
    kp_1: Decimal = Field(ge=0, description="Gain used for small utilization errors")
    optimal_utilization_rate: Decimal = Field(ge=0, description="Target utilization")
    kp_augmentation_threshold: Decimal = Field(ge=0, description="Error above which kp_2 applies")
    kp_2: Decimal = Field(ge=0, description="Gain used for large utilization errors")


InterestRateStrategy = Annotated[
    Union[LinearInterestRate, DynamicInterestRate],
    Field(discriminator="kind"),
]


class AssetParams(BaseModel):
    """Market parameters for initialization or update.

    Every field is optional at the type level: initialization requires all of
    them, updates overlay only the ones provided.
    """
    initial_borrow_rate: Optional[Decimal] = Field(default=None, ge=0, description="Borrow rate until rates are first recomputed")
    max_loan_to_value: Optional[Decimal] = Field(default=None, ge=0, description="Max fraction of collateral value that can be borrowed")
    reserve_factor: Optional[Decimal] = Field(default=None, ge=0, description="Fraction of borrower interest kept by the protocol")
    maintenance_margin: Optional[Decimal] = Field(default=None, ge=0, description="Collateral fraction below which a loan is liquidatable")
    liquidation_bonus: Optional[Decimal] = Field(default=None, ge=0, description="Extra collateral fraction awarded to liquidators")
    interest_rate_strategy: Optional[InterestRateStrategy] = Field(default=None, description="Rate curve parameters")


class PoolConfig(BaseModel):
    """Global pool configuration."""
    owner: str = Field(min_length=1, description="Address allowed to run owner-gated commands")
    close_factor: Decimal = Field(ge=0, description="Max fraction of a debt one liquidation can repay")
    insurance_fund_fee_share: Decimal = Field(ge=0, description="Fraction of protocol income sent to the insurance fund")
    treasury_fee_share: Decimal = Field(ge=0, description="Fraction of protocol income sent to the treasury")
    insurance_fund_address: str = Field(default="", description="Insurance fund recipient")
    treasury_address: str = Field(default="", description="Treasury recipient")
    rewards_address: str = Field(default="", description="Recipient of the remaining protocol income")
    min_liquidation_amount: int = Field(default=1, ge=0, description="Smallest repay amount a liquidation accepts")

    def compute_hash(self) -> str:
        """Compute config hash for reproducibility."""
        config_str = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return self.model_dump(mode="json")


class ConfigUpdate(BaseModel):
    """Subset of PoolConfig fields to overwrite."""
    owner: Optional[str] = Field(default=None, min_length=1)
    close_factor: Optional[Decimal] = Field(default=None, ge=0)
    insurance_fund_fee_share: Optional[Decimal] = Field(default=None, ge=0)
    treasury_fee_share: Optional[Decimal] = Field(default=None, ge=0)
    insurance_fund_address: Optional[str] = None
    treasury_address: Optional[str] = None
    rewards_address: Optional[str] = None
    min_liquidation_amount: Optional[int] = Field(default=None, ge=0)


class AssetSetup(BaseModel):
    """An asset to initialize when bootstrapping a pool from settings."""
    reference: str = Field(min_length=1, description="Native denom or token contract address")
    asset_type: AssetType = Field(description="native or token")
    params: AssetParams


class Settings(BaseModel):
    """Complete settings file: pool configuration plus the initial markets."""
    pool: PoolConfig
    assets: List[AssetSetup] = Field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Settings':
        """Create settings from dictionary."""
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        return self.model_dump(mode="json")
