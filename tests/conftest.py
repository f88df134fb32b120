"""Shared fixtures and builders for the lending pool tests."""

import os
import sys
from decimal import Decimal

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from lendingpool.config.schema import AssetParams, LinearInterestRate, PoolConfig
from lendingpool.engine.fixed_point import SECONDS_PER_YEAR
from lendingpool.engine.state import Asset
from lendingpool.messages import Env, MessageInfo
from lendingpool.pool import LendingPool

OWNER = "owner"
ALICE = "alice"
BOB = "bob"
LIQUIDATOR = "liquidator"

T0 = 1_700_000_000
YEAR = SECONDS_PER_YEAR

COLLATERAL = "uatom"  # index 0, curve-driven rates
DEBT = "uusd"  # index 1, flat 100% annual borrow rate


def linear_strategy(optimal="0.8", base="0", slope_1="0.07", slope_2="0.45") -> LinearInterestRate:
    return LinearInterestRate(
        optimal_utilization_rate=Decimal(optimal),
        base=Decimal(base),
        slope_1=Decimal(slope_1),
        slope_2=Decimal(slope_2),
    )


def flat_strategy(rate: str) -> LinearInterestRate:
    """Borrow rate fixed at `rate` whatever the utilization."""
    return linear_strategy(base=rate, slope_1="0", slope_2="0")


def asset_params(**overrides) -> AssetParams:
    values = {
        "initial_borrow_rate": Decimal("0"),
        "max_loan_to_value": Decimal("0.6"),
        "reserve_factor": Decimal("0.1"),
        "maintenance_margin": Decimal("0.75"),
        "liquidation_bonus": Decimal("0.05"),
        "interest_rate_strategy": linear_strategy(),
    }
    values.update(overrides)
    return AssetParams(**values)


def pool_config(**overrides) -> PoolConfig:
    values = {
        "owner": OWNER,
        "close_factor": Decimal("0.5"),
        "insurance_fund_fee_share": Decimal("0.1"),
        "treasury_fee_share": Decimal("0.2"),
        "insurance_fund_address": "insurance_fund",
        "treasury_address": "treasury",
        "rewards_address": "rewards",
    }
    values.update(overrides)
    return PoolConfig(**values)


def env(t: int = T0) -> Env:
    return Env(block_time=t)


def info(sender: str) -> MessageInfo:
    return MessageInfo(sender=sender)


@pytest.fixture
def prices():
    """Mutable price table read by the pool's oracle."""
    return {COLLATERAL: Decimal("1"), DEBT: Decimal("1")}


@pytest.fixture
def empty_pool(prices):
    return LendingPool(pool_config(), prices.__getitem__)


@pytest.fixture
def pool(empty_pool):
    """Pool with a collateral market and a flat-rate debt market, both at T0."""
    empty_pool.init_asset(env(), info(OWNER), Asset.native(COLLATERAL), asset_params())
    empty_pool.init_asset(
        env(), info(OWNER), Asset.native(DEBT),
        asset_params(interest_rate_strategy=flat_strategy("1"), initial_borrow_rate=Decimal("1")),
    )
    return empty_pool


@pytest.fixture
def funded_pool(pool):
    """Pool where BOB supplies 10,000 of the debt asset."""
    pool.deposit(env(), info(BOB), DEBT, 10_000)
    return pool
