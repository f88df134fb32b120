"""Scaled-Balance Ledger - Index-normalized debt and deposit balances.

Key Concepts:
- A scaled amount s stands for the real amount s * index / SCALING_FACTOR at read time
- Writes convert real -> scaled with the post-accrual index; reads use the current index
- Per-user records and market totals are always updated together
- Bit i of the user's borrowed/collateral set is on iff the scaled balance in market i is nonzero

Rounding always favors the pool:
- borrow: scaled rounded up        - repay: scaled rounded down
- deposit: scaled rounded down     - withdraw: scaled rounded up (capped at the balance)
- debt read: rounded up            - deposit read: rounded down
"""

from decimal import Decimal
from typing import Optional, Tuple

from ..errors import ExceedsCollateral, InsufficientBalance, InsufficientLiquidity, InvalidAmount
from .fixed_point import (
    SCALING_FACTOR,
    checked_uint128,
    div_ceil,
    div_floor,
    mul_div_ceil,
    mul_div_floor,
)
from .interest import InterestRateEngine
from .positions import clear_borrowing, clear_collateral, set_borrowing, set_collateral
from .state import Debt, Market
from .storage import PoolStorage


def scaled_debt_for_borrow(amount: int, borrow_index: Decimal) -> int:
    return div_ceil(amount * SCALING_FACTOR, borrow_index)


def scaled_debt_for_repay(amount: int, borrow_index: Decimal) -> int:
    return div_floor(amount * SCALING_FACTOR, borrow_index)


def debt_amount(amount_scaled: int, borrow_index: Decimal) -> int:
    return mul_div_ceil(amount_scaled, borrow_index, SCALING_FACTOR)


def scaled_deposit_for_deposit(amount: int, liquidity_index: Decimal) -> int:
    return div_floor(amount * SCALING_FACTOR, liquidity_index)


def scaled_deposit_for_withdraw(amount: int, liquidity_index: Decimal) -> int:
    return div_ceil(amount * SCALING_FACTOR, liquidity_index)


def deposit_amount(amount_scaled: int, liquidity_index: Decimal) -> int:
    return mul_div_floor(amount_scaled, liquidity_index, SCALING_FACTOR)


class ScaledLedger:
    """Debt and deposit balances of every user, stored scaled."""

    def __init__(self, storage: PoolStorage, interest: InterestRateEngine):
        """
        Initialize ledger.

        Args:
            storage: Pool state
            interest: Engine used to accrue markets before each write
        """
        self.storage = storage
        self.interest = interest

    # Reads

    def debt_balance(self, market: Market, address: str, now: int) -> int:
        """Real debt of a user in a market as of `now`."""
        scaled = self.storage.debt_scaled(market.asset_reference, address)
        if scaled == 0:
            return 0
        projected = self.interest.projected_indices(market, now)
        return debt_amount(scaled, projected.borrow_index)

    def collateral_balance(self, market: Market, address: str, now: int) -> int:
        """Real deposit of a user in a market as of `now`."""
        scaled = self.storage.collateral_scaled(market.asset_reference, address)
        if scaled == 0:
            return 0
        projected = self.interest.projected_indices(market, now)
        return deposit_amount(scaled, projected.liquidity_index)

    # Debt

    def increase_debt(self, market: Market, address: str, amount: int, now: int) -> int:
        """
        Add `amount` of real debt to the user.

        Returns:
            Scaled amount added
        """
        _require_positive(amount)
        self.interest.accrue(market, now)

        scaled = scaled_debt_for_borrow(amount, market.borrow_index)
        key = (market.asset_reference, address)
        debt = self.storage.debts.get(key) or Debt()
        debt.amount_scaled = checked_uint128(debt.amount_scaled + scaled, "debt amount_scaled")
        market.debt_total_scaled = checked_uint128(market.debt_total_scaled + scaled, "debt_total_scaled")
        self.storage.debts[key] = debt

        set_borrowing(self.storage.user_or_new(address), market.index)
        return scaled

    def decrease_debt(self, market: Market, address: str, amount: int, now: int) -> int:
        """
        Remove `amount` of real debt from the user. Repaying exactly the
        outstanding debt clears it.

        Returns:
            Scaled amount removed

        Raises:
            InsufficientBalance: If `amount` exceeds the outstanding debt
        """
        _require_positive(amount)
        self.interest.accrue(market, now)

        current_scaled = self.storage.debt_scaled(market.asset_reference, address)
        outstanding = debt_amount(current_scaled, market.borrow_index)
        if amount > outstanding:
            raise InsufficientBalance(
                f"Repay amount {amount} exceeds outstanding debt {outstanding} "
                f"in {market.asset_reference}"
            )
        if amount == outstanding:
            scaled = current_scaled
        else:
            scaled = scaled_debt_for_repay(amount, market.borrow_index)

        self._remove_debt_scaled(market, address, scaled)
        return scaled

    def _remove_debt_scaled(self, market: Market, address: str, scaled: int) -> None:
        key = (market.asset_reference, address)
        debt = self.storage.debts.get(key)
        if debt is None or scaled > debt.amount_scaled:
            raise InsufficientBalance(f"Scaled debt of {address} in {market.asset_reference} would go negative")

        debt.amount_scaled -= scaled
        market.debt_total_scaled = checked_uint128(market.debt_total_scaled - scaled, "debt_total_scaled")

        if debt.amount_scaled == 0:
            user = self.storage.user_or_new(address)
            clear_borrowing(user, market.index)
            # A credit-line record survives at zero balance
            if not debt.uncollateralized:
                del self.storage.debts[key]
            self.storage.prune_user(address)

    # Collateral

    def increase_collateral(self, market: Market, address: str, amount: int, now: int) -> int:
        """
        Credit a deposit of `amount` to the user.

        Returns:
            Scaled amount added

        Raises:
            InvalidAmount: If the deposit is too small to be represented at the current index
        """
        _require_positive(amount)
        self.interest.accrue(market, now)

        scaled = scaled_deposit_for_deposit(amount, market.liquidity_index)
        if scaled == 0:
            raise InvalidAmount(f"Deposit of {amount} is too small to register in {market.asset_reference}")
        self._add_collateral_scaled(market, address, scaled)
        return scaled

    def decrease_collateral(
        self,
        market: Market,
        address: str,
        amount: Optional[int],
        now: int,
    ) -> Tuple[int, int]:
        """
        Debit a withdrawal from the user's deposit.

        Args:
            market: Market to withdraw from
            address: User address
            amount: Real amount, or None for the whole balance
            now: Block time in seconds

        Returns:
            (real amount withdrawn, scaled amount removed)

        Raises:
            InsufficientBalance: If `amount` exceeds the user's deposit
        """
        if amount is not None:
            _require_positive(amount)
        self.interest.accrue(market, now)

        balance_scaled = self.storage.collateral_scaled(market.asset_reference, address)
        balance = deposit_amount(balance_scaled, market.liquidity_index)

        if amount is None:
            if balance_scaled == 0:
                raise InsufficientBalance(f"{address} has no deposit in {market.asset_reference}")
            amount = balance
            scaled = balance_scaled
        elif amount > balance:
            raise InsufficientBalance(
                f"Withdraw amount {amount} exceeds deposit {balance} in {market.asset_reference}"
            )
        else:
            scaled = min(scaled_deposit_for_withdraw(amount, market.liquidity_index), balance_scaled)

        self._remove_collateral_scaled(market, address, scaled)
        return amount, scaled

    def transfer_collateral(
        self,
        market: Market,
        sender: str,
        recipient: str,
        amount: int,
        now: int,
    ) -> int:
        """
        Move `amount` of real deposit between users without touching market totals.

        Returns:
            Scaled amount moved

        Raises:
            ExceedsCollateral: If `amount` exceeds the sender's deposit
        """
        _require_positive(amount)
        self.interest.accrue(market, now)

        balance_scaled = self.storage.collateral_scaled(market.asset_reference, sender)
        balance = deposit_amount(balance_scaled, market.liquidity_index)
        if amount > balance:
            raise ExceedsCollateral(
                f"Cannot move {amount} of {market.asset_reference}: {sender} holds {balance}"
            )
        scaled = min(scaled_deposit_for_withdraw(amount, market.liquidity_index), balance_scaled)

        self._remove_collateral_scaled(market, sender, scaled)
        self._add_collateral_scaled(market, recipient, scaled)
        return scaled

    def _add_collateral_scaled(self, market: Market, address: str, scaled: int) -> None:
        key = (market.asset_reference, address)
        self.storage.collateral[key] = checked_uint128(
            self.storage.collateral.get(key, 0) + scaled, "collateral amount_scaled"
        )
        market.collateral_total_scaled = checked_uint128(
            market.collateral_total_scaled + scaled, "collateral_total_scaled"
        )
        set_collateral(self.storage.user_or_new(address), market.index)

    def _remove_collateral_scaled(self, market: Market, address: str, scaled: int) -> None:
        key = (market.asset_reference, address)
        current = self.storage.collateral.get(key, 0)
        if scaled > current:
            raise InsufficientBalance(f"Scaled deposit of {address} in {market.asset_reference} would go negative")

        remaining = current - scaled
        market.collateral_total_scaled = checked_uint128(
            market.collateral_total_scaled - scaled, "collateral_total_scaled"
        )
        if remaining == 0:
            del self.storage.collateral[key]
            clear_collateral(self.storage.user_or_new(address), market.index)
            self.storage.prune_user(address)
        else:
            self.storage.collateral[key] = remaining

    # Pool cash

    def credit_liquidity(self, market: Market, amount: int) -> None:
        market.available_liquidity = checked_uint128(market.available_liquidity + amount, "available_liquidity")

    def debit_liquidity(self, market: Market, amount: int) -> None:
        """
        Raises:
            InsufficientLiquidity: If the pool holds less than `amount` of the asset
        """
        if amount > market.available_liquidity:
            raise InsufficientLiquidity(
                f"Pool holds {market.available_liquidity} of {market.asset_reference}, {amount} requested"
            )
        market.available_liquidity -= amount


def _require_positive(amount: int) -> None:
    if amount <= 0:
        raise InvalidAmount(f"Amount must be greater than 0, got {amount}")
