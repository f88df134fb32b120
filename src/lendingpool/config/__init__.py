"""Pool configuration models and loader."""

from .loader import load_config, save_config
from .schema import (
    AssetParams,
    AssetSetup,
    ConfigUpdate,
    DynamicInterestRate,
    LinearInterestRate,
    PoolConfig,
    Settings,
)

__all__ = [
    "AssetParams",
    "AssetSetup",
    "ConfigUpdate",
    "DynamicInterestRate",
    "LinearInterestRate",
    "PoolConfig",
    "Settings",
    "load_config",
    "save_config",
]
