"""Liquidation Engine - Position health and liquidation planning.

Key Concepts:
- Health walks only the markets set in the user's bit-sets
- Balances are read with indices projected to "now"; nothing is written
- Values are amount * oracle price, summed across markets
- healthy:      debt_value <= sum(collateral_value_i * max_loan_to_value_i)
- liquidatable: debt_value >  sum(collateral_value_i * maintenance_margin_i)
- Uncollateralized debt is backed by a credit line and stays out of both totals
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from ..errors import (
    LiquidationAmountTooSmall,
    NoCollateral,
    NotLiquidatable,
)
from .fixed_point import (
    ONE,
    ZERO,
    ceil_int,
    floor_int,
    mul_floor,
    to_decimal,
    value_add,
    value_div,
    value_mul,
    value_of,
)
from .interest import InterestRateEngine
from .ledger import debt_amount, deposit_amount
from .positions import iter_borrowed, iter_collateral
from .state import Market
from .storage import PoolStorage

logger = logging.getLogger(__name__)

PriceOracle = Callable[[str], Decimal]


@dataclass
class HealthSummary:
    """Aggregate valuation of a user's position."""
    total_collateral_value: Decimal = ZERO
    total_debt_value: Decimal = ZERO
    max_borrow_value: Decimal = ZERO  # sum of collateral_value * max_loan_to_value
    maintenance_threshold: Decimal = ZERO  # sum of collateral_value * maintenance_margin

    @property
    def health_factor(self) -> Optional[Decimal]:
        """maintenance_threshold / debt_value, or None without collateralized debt."""
        if self.total_debt_value == 0:
            return None
        return value_div(self.maintenance_threshold, self.total_debt_value)

    @property
    def is_healthy(self) -> bool:
        return self.total_debt_value <= self.max_borrow_value

    @property
    def is_liquidatable(self) -> bool:
        return self.total_debt_value > self.maintenance_threshold


@dataclass
class LiquidationPlan:
    """Amounts a liquidation will move, all in real units."""
    debt_amount: int  # Borrower's debt in the debt market before repayment
    repay_amount: int  # Debt actually repaid by the liquidator
    collateral_seized: int  # Collateral handed to the liquidator
    refund_amount: int  # Part of the sent funds returned to the liquidator


class LiquidationEngine:
    """Values positions with an external price oracle and sizes liquidations."""

    def __init__(self, storage: PoolStorage, interest: InterestRateEngine, price_oracle: PriceOracle):
        """
        Initialize engine.

        Args:
            storage: Pool state
            interest: Engine used to project indices to the current time
            price_oracle: Maps an asset reference to its price in a common unit
        """
        self.storage = storage
        self.interest = interest
        self.price_oracle = price_oracle

    def price(self, reference: str) -> Decimal:
        return to_decimal(self.price_oracle(reference))

    def compute_health(self, address: str, now: int) -> HealthSummary:
        """
        Value a user's collateral and debt as of `now`.

        Args:
            address: User address
            now: Block time in seconds

        Returns:
            HealthSummary; all zeros for a user without a record
        """
        summary = HealthSummary()
        user = self.storage.users.get(address)
        if user is None:
            return summary

        for index in iter_collateral(user):
            market = self.storage.load_market_by_index(index)
            scaled = self.storage.collateral_scaled(market.asset_reference, address)
            projected = self.interest.projected_indices(market, now)
            amount = deposit_amount(scaled, projected.liquidity_index)
            value = value_of(amount, self.price(market.asset_reference))

            summary.total_collateral_value = value_add(summary.total_collateral_value, value)
            summary.max_borrow_value = value_add(
                summary.max_borrow_value, value_mul(value, market.max_loan_to_value)
            )
            summary.maintenance_threshold = value_add(
                summary.maintenance_threshold, value_mul(value, market.maintenance_margin)
            )

        for index in iter_borrowed(user):
            market = self.storage.load_market_by_index(index)
            debt = self.storage.debt(market.asset_reference, address)
            if debt is None or debt.uncollateralized:
                continue
            projected = self.interest.projected_indices(market, now)
            amount = debt_amount(debt.amount_scaled, projected.borrow_index)
            summary.total_debt_value = value_add(
                summary.total_debt_value, value_of(amount, self.price(market.asset_reference))
            )

        return summary

    def is_healthy(self, address: str, now: int) -> bool:
        return self.compute_health(address, now).is_healthy

    def is_liquidatable(self, address: str, now: int) -> bool:
        return self.compute_health(address, now).is_liquidatable

    def plan_liquidation(
        self,
        borrower: str,
        debt_market: Market,
        collateral_market: Market,
        amount_sent: int,
        now: int,
    ) -> LiquidationPlan:
        """
        Size a liquidation without changing state.

        The repay is clamped to close_factor of the borrower's debt in the
        debt market. Collateral is seized at
        repay * debt_price * (1 + liquidation_bonus) / collateral_price, capped
        at the borrower's deposit; when the cap binds the repay shrinks to what
        the available collateral covers.

        Checks run in this order, and the first failure is raised: position
        health, dust threshold, uncollateralized debt, collateral in the
        collateral market, debt in the debt market.

        Args:
            borrower: Address of the position being liquidated
            debt_market: Market whose debt is repaid
            collateral_market: Market whose collateral is seized
            amount_sent: Funds the liquidator sent in the debt asset
            now: Block time in seconds

        Returns:
            LiquidationPlan

        Raises:
            LiquidationAmountTooSmall: If amount_sent is below min_liquidation_amount
            NotLiquidatable: If the position is healthy, has no debt in the
                debt market, or that debt is uncollateralized
            NoCollateral: If the borrower has no deposit in the collateral market
        """
        health = self.compute_health(borrower, now)
        if not health.is_liquidatable:
            self._reject(borrower, "healthy position")
            raise NotLiquidatable(
                f"Position of {borrower} is healthy: debt value {health.total_debt_value} "
                f"within maintenance threshold {health.maintenance_threshold}"
            )

        min_amount = max(self.storage.config.min_liquidation_amount, 1)
        if amount_sent < min_amount:
            raise LiquidationAmountTooSmall(
                f"Liquidation amount {amount_sent} is below the minimum of {min_amount}"
            )

        debt = self.storage.debt(debt_market.asset_reference, borrower)
        if debt is not None and debt.uncollateralized:
            self._reject(borrower, "uncollateralized debt")
            raise NotLiquidatable(f"Debt of {borrower} in {debt_market.asset_reference} is uncollateralized")

        collateral_scaled = self.storage.collateral_scaled(collateral_market.asset_reference, borrower)
        if collateral_scaled == 0:
            self._reject(borrower, "no collateral")
            raise NoCollateral(f"{borrower} has no collateral in {collateral_market.asset_reference}")

        if debt is None or debt.amount_scaled == 0:
            self._reject(borrower, "no debt")
            raise NotLiquidatable(f"{borrower} has no debt in {debt_market.asset_reference}")

        debt_projected = self.interest.projected_indices(debt_market, now)
        current_debt = debt_amount(debt.amount_scaled, debt_projected.borrow_index)
        max_repay = mul_floor(current_debt, self.storage.config.close_factor)
        repay = min(amount_sent, max_repay)
        if repay == 0:
            raise LiquidationAmountTooSmall(f"Close factor allows no repayment of {current_debt} debt")

        collateral_projected = self.interest.projected_indices(collateral_market, now)
        available_collateral = deposit_amount(collateral_scaled, collateral_projected.liquidity_index)

        debt_price = self.price(debt_market.asset_reference)
        collateral_price = self.price(collateral_market.asset_reference)
        # Collateral value owed per unit of debt repaid
        bonus_price = value_mul(debt_price, value_add(ONE, collateral_market.liquidation_bonus))

        seized = floor_int(value_div(value_of(repay, bonus_price), collateral_price))
        if seized > available_collateral:
            seized = available_collateral
            repay = min(repay, ceil_int(value_div(value_of(available_collateral, collateral_price), bonus_price)))

        return LiquidationPlan(
            debt_amount=current_debt,
            repay_amount=repay,
            collateral_seized=seized,
            refund_amount=amount_sent - repay,
        )

    def _reject(self, borrower: str, reason: str) -> None:
        logger.warning(
            "Liquidation rejected",
            extra={"event": "lending_pool.liquidate_rejected", "borrower": borrower, "reason": reason},
        )
