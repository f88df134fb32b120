"""Validation rules for pool configuration and market parameters.

Checks are ordered lists of (condition, field name) pairs evaluated eagerly;
the first failing pair names the field in the raised error.
"""

from decimal import Decimal
from typing import Iterable, Tuple, Type

from ..config.schema import DynamicInterestRate, LinearInterestRate, PoolConfig
from ..engine.fixed_point import ONE
from ..engine.state import Market
from ..errors import InvalidConfig, InvalidMarketParams, LendingPoolError


def all_conditions_valid(
    conditions_and_names: Iterable[Tuple[bool, str]],
    error_cls: Type[LendingPoolError] = InvalidConfig,
    requirement: str = "should be less or equal to 1",
) -> None:
    """
    Raise for the first condition that does not hold.

    Args:
        conditions_and_names: (condition, field name) pairs in check order
        error_cls: Error type raised for a failing condition
        requirement: Human-readable rule appended to the field name

    Raises:
        error_cls: With `field` set to the failing field name
    """
    for condition, name in conditions_and_names:
        if not condition:
            raise error_cls(f"Invalid param: {name} {requirement}", field=name)


def less_or_equal_one(value: Decimal) -> bool:
    return value <= ONE


def validate_pool_config(config: PoolConfig) -> None:
    """Validate global pool configuration.

    Raises:
        InvalidConfig: If a fee share or the close factor is above one, or the
            fee shares together exceed one
    """
    all_conditions_valid(
        [
            (less_or_equal_one(config.close_factor), "close_factor"),
            (less_or_equal_one(config.insurance_fund_fee_share), "insurance_fund_fee_share"),
            (less_or_equal_one(config.treasury_fee_share), "treasury_fee_share"),
        ],
        InvalidConfig,
    )

    combined_fee_share = config.insurance_fund_fee_share + config.treasury_fee_share
    if combined_fee_share > ONE:
        raise InvalidConfig(
            "Invalid fee share amounts. Sum of insurance and treasury fee shares exceed one",
            field="insurance_fund_fee_share",
        )


def validate_interest_rate_strategy(strategy) -> None:
    """Validate the parameters of a rate strategy.

    Raises:
        InvalidMarketParams: If a strategy parameter is inconsistent
    """
    if isinstance(strategy, LinearInterestRate):
        all_conditions_valid(
            [
                (less_or_equal_one(strategy.optimal_utilization_rate), "optimal_utilization_rate"),
            ],
            InvalidMarketParams,
        )
    elif isinstance(strategy, DynamicInterestRate):
        if strategy.min_borrow_rate >= strategy.max_borrow_rate:
            raise InvalidMarketParams(
                "max_borrow_rate should be greater than min_borrow_rate. "
                f"max_borrow_rate: {strategy.max_borrow_rate}, "
                f"min_borrow_rate: {strategy.min_borrow_rate}",
                field="max_borrow_rate",
            )
        all_conditions_valid(
            [
                (less_or_equal_one(strategy.optimal_utilization_rate), "optimal_utilization_rate"),
            ],
            InvalidMarketParams,
        )
    else:
        raise InvalidMarketParams(
            f"Unsupported interest rate strategy: {type(strategy).__name__}",
            field="interest_rate_strategy",
        )


def validate_market(market: Market) -> None:
    """Validate a market's risk parameters and rate strategy.

    Raises:
        InvalidMarketParams: On the first violated rule
    """
    validate_interest_rate_strategy(market.interest_rate_strategy)

    all_conditions_valid(
        [
            (less_or_equal_one(market.max_loan_to_value), "max_loan_to_value"),
            (less_or_equal_one(market.reserve_factor), "reserve_factor"),
            (less_or_equal_one(market.maintenance_margin), "maintenance_margin"),
            (less_or_equal_one(market.liquidation_bonus), "liquidation_bonus"),
        ],
        InvalidMarketParams,
    )

    if market.maintenance_margin <= market.max_loan_to_value:
        raise InvalidMarketParams(
            "maintenance_margin should be greater than max_loan_to_value. "
            f"maintenance_margin: {market.maintenance_margin}, "
            f"max_loan_to_value: {market.max_loan_to_value}",
            field="maintenance_margin",
        )
