"""Typed failures raised by the lending pool.

Every command either completes or raises one of these; the storage
transaction around the command discards any partial state first.
"""

from typing import Optional


class LendingPoolError(Exception):
    """Base class for all lending pool failures."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class Unauthorized(LendingPoolError):
    """Caller is not allowed to perform an owner-gated action."""

    def __init__(self, message: str = "Only the owner can perform this action"):
        super().__init__(message)


class InvalidConfig(LendingPoolError):
    """A pool configuration rule is violated."""


class InvalidMarketParams(LendingPoolError):
    """A market parameter rule is violated, or a required parameter is missing."""


class InvalidAmount(LendingPoolError):
    """An amount argument is zero or negative."""


class MarketNotFound(LendingPoolError):
    """No market exists for the requested asset, index or token address."""


class MarketAlreadyExists(LendingPoolError):
    """A market was already initialized for the asset."""


class MarketCapacityExceeded(LendingPoolError):
    """The position bit-set has no room for another market."""


class UserRecordNotFound(LendingPoolError):
    """No position record exists for the user."""


class InsufficientBalance(LendingPoolError):
    """A decrease would make a scaled balance negative."""


class InsufficientLiquidity(LendingPoolError):
    """The pool does not hold enough of the asset to pay out."""


class NotLiquidatable(LendingPoolError):
    """Liquidation attempted on a position that cannot be liquidated."""


class NoCollateral(LendingPoolError):
    """The borrower has no collateral in the requested market."""


class LiquidationAmountTooSmall(LendingPoolError):
    """The liquidator sent less than the configured dust threshold."""


class ExceedsCollateral(LendingPoolError):
    """A seizure asks for more collateral than the borrower holds."""


class Insolvent(LendingPoolError):
    """A borrow or withdraw would leave the position unhealthy."""


class BorrowLimitExceeded(Insolvent):
    """A borrow would push uncollateralized debt past the user's credit line."""


class ArithmeticOverflow(LendingPoolError):
    """A fixed-point or integer result falls outside its representable range."""
