"""Consistency checks between per-user balances, market totals and bit-sets."""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..engine.positions import iter_borrowed, iter_collateral
from ..engine.storage import PoolStorage


@dataclass
class ValidationWarning:
    """A validation warning with severity and message."""
    severity: str  # "warning" or "error"
    category: str  # "debt_totals", "collateral_totals", "positions"
    message: str
    details: Optional[str] = None


class LedgerChecker:
    """Check the ledger invariants of a pool's storage."""

    def __init__(self, storage: PoolStorage):
        """Initialize with pool storage."""
        self.storage = storage

    def check_all(self) -> List[ValidationWarning]:
        """
        Run every check.

        Returns:
            List of validation warnings, empty when the ledger is consistent
        """
        return self.check_debt_totals() + self.check_collateral_totals() + self.check_positions()

    def check_debt_totals(self) -> List[ValidationWarning]:
        """Each market's debt_total_scaled equals the sum of its users' scaled debts."""
        sums: Dict[str, int] = defaultdict(int)
        for (reference, _), debt in self.storage.debts.items():
            sums[reference] += debt.amount_scaled

        warnings = []
        for reference, market in self.storage.markets.items():
            if sums[reference] != market.debt_total_scaled:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="debt_totals",
                    message=f"Scaled debt of {reference} doesn't sum to the market total",
                    details=f"users: {sums[reference]}, market: {market.debt_total_scaled}",
                ))
        return warnings

    def check_collateral_totals(self) -> List[ValidationWarning]:
        """Each market's collateral_total_scaled equals the sum of its users' scaled deposits."""
        sums: Dict[str, int] = defaultdict(int)
        for (reference, _), scaled in self.storage.collateral.items():
            sums[reference] += scaled

        warnings = []
        for reference, market in self.storage.markets.items():
            if sums[reference] != market.collateral_total_scaled:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="collateral_totals",
                    message=f"Scaled collateral of {reference} doesn't sum to the market total",
                    details=f"users: {sums[reference]}, market: {market.collateral_total_scaled}",
                ))
        return warnings

    def check_positions(self) -> List[ValidationWarning]:
        """A user's bit for a market is set iff the matching scaled balance is nonzero."""
        warnings = []
        storage = self.storage

        for address, user in storage.users.items():
            if user.is_empty():
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="positions",
                    message=f"Empty user record kept for {address}",
                ))
            for index in iter_borrowed(user):
                reference = storage.market_refs_by_index.get(index)
                if reference is None or storage.debt_scaled(reference, address) == 0:
                    warnings.append(ValidationWarning(
                        severity="error",
                        category="positions",
                        message=f"Borrowing bit {index} set for {address} without debt",
                    ))
            for index in iter_collateral(user):
                reference = storage.market_refs_by_index.get(index)
                if reference is None or storage.collateral_scaled(reference, address) == 0:
                    warnings.append(ValidationWarning(
                        severity="error",
                        category="positions",
                        message=f"Collateral bit {index} set for {address} without deposit",
                    ))

        for (reference, address), debt in storage.debts.items():
            if debt.amount_scaled == 0:
                continue
            user = storage.users.get(address)
            index = storage.markets[reference].index
            if user is None or index not in user.borrowed_assets:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="positions",
                    message=f"Debt of {address} in {reference} has no borrowing bit",
                    details=f"amount_scaled: {debt.amount_scaled}",
                ))

        for (reference, address), scaled in storage.collateral.items():
            user = storage.users.get(address)
            index = storage.markets[reference].index
            if scaled == 0 or user is None or index not in user.collateral_assets:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="positions",
                    message=f"Deposit of {address} in {reference} has no collateral bit",
                    details=f"amount_scaled: {scaled}",
                ))

        return warnings
