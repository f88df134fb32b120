"""Accounting and risk core of a multi-asset lending pool."""

from .engine.state import Asset, AssetType
from .messages import Env, MessageInfo, Response
from .pool import LendingPool

__all__ = [
    "Asset",
    "AssetType",
    "Env",
    "LendingPool",
    "MessageInfo",
    "Response",
]
