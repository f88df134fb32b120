"""Interest Rate Engine - Utilization-driven rates and compounding indices.

Key Concepts:
- Each market advances from interests_last_updated to "now" at most once per timestamp
- Indices compound with the rates in force over the elapsed period:
    borrow_index    *= 1 + borrow_rate * dt
    liquidity_index *= 1 + liquidity_rate * (1 - reserve_factor) * dt
- The reserve_factor share of borrower interest becomes protocol income
- Rates are recomputed by the market's strategy after each balance change,
  from the utilization that change leaves behind
- A controller strategy (dynamic) steps its borrow rate at most once per block time
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict

import numpy as np
import pandas as pd

from .fixed_point import (
    ONE,
    SCALING_FACTOR,
    SECONDS_PER_YEAR,
    ZERO,
    checked_uint128,
    decimal_add,
    decimal_div,
    decimal_from_ratio,
    decimal_mul,
    decimal_sub,
    mul_div_ceil,
    mul_div_floor,
    mul_floor,
    saturating_sub,
    to_decimal,
)
from .state import Market

logger = logging.getLogger(__name__)


def linear_borrow_rate(strategy, utilization: Decimal, current_borrow_rate: Decimal) -> Decimal:
    """
    Kinked linear curve.

    Formula:
        u <= optimal: base + slope_1 * u / optimal
        u >  optimal: base + slope_1 + slope_2 * (u - optimal) / (1 - optimal)
    """
    if utilization == 0:
        return strategy.base

    optimal = strategy.optimal_utilization_rate
    if utilization <= optimal:
        return decimal_add(
            strategy.base,
            decimal_mul(strategy.slope_1, decimal_div(utilization, optimal)),
        )
    excess = decimal_div(decimal_sub(utilization, optimal), decimal_sub(ONE, optimal))
    return decimal_add(
        decimal_add(strategy.base, strategy.slope_1),
        decimal_mul(strategy.slope_2, excess),
    )


def dynamic_borrow_rate(strategy, utilization: Decimal, current_borrow_rate: Decimal) -> Decimal:
    """
    Proportional controller around the optimal utilization.

    The rate moves by kp * |u - optimal| towards restoring the optimum, with
    kp_2 replacing kp_1 once the error reaches kp_augmentation_threshold, then
    is clamped to [min_borrow_rate, max_borrow_rate].
    """
    optimal = strategy.optimal_utilization_rate
    if utilization >= optimal:
        error = decimal_sub(utilization, optimal)
        rate_goes_up = True
    else:
        error = decimal_sub(optimal, utilization)
        rate_goes_up = False

    kp = strategy.kp_2 if error >= strategy.kp_augmentation_threshold else strategy.kp_1
    adjustment = decimal_mul(kp, error)

    if rate_goes_up:
        new_rate = decimal_add(current_borrow_rate, adjustment)
    else:
        new_rate = saturating_sub(current_borrow_rate, adjustment)

    return min(max(new_rate, strategy.min_borrow_rate), strategy.max_borrow_rate)


BORROW_RATE_MODELS: Dict[str, Callable[..., Decimal]] = {
    "linear": linear_borrow_rate,
    "dynamic": dynamic_borrow_rate,
}

# Models whose output depends on the current borrow rate
CONTROLLER_MODELS = frozenset({"dynamic"})


def get_borrow_rate(strategy, utilization: Decimal, current_borrow_rate: Decimal) -> Decimal:
    return BORROW_RATE_MODELS[strategy.kind](strategy, utilization, current_borrow_rate)


def get_liquidity_rate(borrow_rate: Decimal, utilization: Decimal) -> Decimal:
    """Gross deposit rate: the borrow rate spread over all deposits."""
    return decimal_mul(borrow_rate, utilization)


@dataclass
class ProjectedIndices:
    """Indices of a market as of a given time, plus income accrued to get there."""
    borrow_index: Decimal
    liquidity_index: Decimal
    protocol_income: int


class InterestRateEngine:
    """Accrues interest and refreshes rates on markets."""

    def total_debt(self, market: Market, borrow_index: Decimal = None) -> int:
        """Real debt of the whole market, rounded up."""
        index = market.borrow_index if borrow_index is None else borrow_index
        return mul_div_ceil(market.debt_total_scaled, index, SCALING_FACTOR)

    def utilization(self, market: Market) -> Decimal:
        """
        Compute utilization ratio.

        Formula: total_debt / (total_debt + available_liquidity), capped at 1

        Returns:
            Utilization in [0, 1]; 0 for an empty market
        """
        debt = self.total_debt(market)
        denominator = debt + market.available_liquidity
        if denominator == 0:
            return ZERO
        return min(decimal_from_ratio(debt, denominator), ONE)

    def projected_indices(self, market: Market, now: int) -> ProjectedIndices:
        """
        Compute the market's indices as of `now` without writing anything.

        Args:
            market: Market to project
            now: Block time in seconds

        Returns:
            Projected indices and the protocol income accrued since the last update

        Raises:
            RuntimeError: If `now` is earlier than the last accrual
        """
        elapsed = now - market.interests_last_updated
        if elapsed < 0:
            raise RuntimeError(
                f"Accrual time went backwards for market {market.asset_reference}: "
                f"now={now}, last_updated={market.interests_last_updated}"
            )
        if elapsed == 0:
            return ProjectedIndices(market.borrow_index, market.liquidity_index, 0)

        years = decimal_from_ratio(elapsed, SECONDS_PER_YEAR)

        borrow_index = market.borrow_index
        if market.borrow_rate > 0:
            borrow_growth = decimal_add(ONE, decimal_mul(market.borrow_rate, years))
            borrow_index = decimal_mul(market.borrow_index, borrow_growth)

        liquidity_index = market.liquidity_index
        if market.liquidity_rate > 0:
            depositor_rate = decimal_mul(market.liquidity_rate, decimal_sub(ONE, market.reserve_factor))
            liquidity_growth = decimal_add(ONE, decimal_mul(depositor_rate, years))
            liquidity_index = decimal_mul(market.liquidity_index, liquidity_growth)

        # Interest charged to borrowers over the period, in real units
        index_delta = decimal_sub(borrow_index, market.borrow_index)
        borrower_interest = mul_div_floor(market.debt_total_scaled, index_delta, SCALING_FACTOR)
        protocol_income = mul_floor(borrower_interest, market.reserve_factor)

        return ProjectedIndices(borrow_index, liquidity_index, protocol_income)

    def accrue(self, market: Market, now: int) -> None:
        """
        Bring the market's indices and protocol income up to `now`.

        Calling twice with the same `now` leaves the market unchanged.
        """
        if now == market.interests_last_updated:
            return

        projected = self.projected_indices(market, now)
        market.borrow_index = projected.borrow_index
        market.liquidity_index = projected.liquidity_index
        market.protocol_income_to_distribute = checked_uint128(
            market.protocol_income_to_distribute + projected.protocol_income,
            "protocol_income_to_distribute",
        )
        market.interests_last_updated = now

        logger.debug(
            "Interest accrued",
            extra={
                "event": "lending_pool.accrue",
                "market": market.asset_reference,
                "borrow_index": str(market.borrow_index),
                "liquidity_index": str(market.liquidity_index),
                "protocol_income": projected.protocol_income,
            },
        )

    def update_interest_rates(self, market: Market, now: int) -> None:
        """
        Recompute borrow and liquidity rates from the current utilization.

        Curve strategies follow utilization on every call. A controller
        strategy steps from the current borrow rate, so it moves only on the
        first call at a new block time; later calls in the same block only
        refresh the liquidity rate.
        """
        utilization = self.utilization(market)
        strategy = market.interest_rate_strategy
        if strategy.kind not in CONTROLLER_MODELS or now > market.rates_last_updated:
            market.borrow_rate = get_borrow_rate(strategy, utilization, market.borrow_rate)
            market.rates_last_updated = now
        market.liquidity_rate = get_liquidity_rate(market.borrow_rate, utilization)


def rate_curve(strategy, n_points: int = 101, current_borrow_rate: Decimal = ZERO) -> pd.DataFrame:
    """Sample a strategy over utilization in [0, 1].

    For the dynamic strategy each point is the single-step response from
    `current_borrow_rate`.

    Returns:
        DataFrame with columns: utilization, borrow_rate, liquidity_rate
    """
    utilizations = np.linspace(0.0, 1.0, n_points)
    borrow_rates = []
    liquidity_rates = []
    for u in utilizations:
        utilization = min(to_decimal(round(float(u), 12)), ONE)
        borrow_rate = get_borrow_rate(strategy, utilization, current_borrow_rate)
        borrow_rates.append(float(borrow_rate))
        liquidity_rates.append(float(get_liquidity_rate(borrow_rate, utilization)))

    return pd.DataFrame(
        {
            "utilization": utilizations,
            "borrow_rate": borrow_rates,
            "liquidity_rate": liquidity_rates,
        }
    )
