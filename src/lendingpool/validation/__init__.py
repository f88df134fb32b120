"""Validation rules and ledger consistency checks for the lending pool."""

from .invariants import LedgerChecker, ValidationWarning
from .rules import all_conditions_valid, validate_market, validate_pool_config

__all__ = [
    "LedgerChecker",
    "ValidationWarning",
    "all_conditions_valid",
    "validate_market",
    "validate_pool_config",
]
