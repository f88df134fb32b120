"""Settings loader from YAML."""

from collections import Counter
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..errors import InvalidConfig
from .schema import Settings

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def load_config(yaml_path: str = None, pool_overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Load pool settings from YAML file.

    Args:
        yaml_path: Path to YAML file (defaults to defaults.yaml)
        pool_overrides: Values replacing fields of the file's `pool` section

    Returns:
        Settings object

    Raises:
        InvalidConfig: If the file is not a mapping or lists an asset twice
    """
    if yaml_path is None:
        yaml_path = DEFAULTS_PATH

    with open(yaml_path, 'r') as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise InvalidConfig(f"Settings file {yaml_path} does not hold a mapping")
    if pool_overrides:
        data = {**data, "pool": {**(data.get("pool") or {}), **pool_overrides}}

    settings = Settings.from_dict(data)

    duplicates = sorted(ref for ref, count in Counter(a.reference for a in settings.assets).items() if count > 1)
    if duplicates:
        raise InvalidConfig(f"Assets listed more than once: {', '.join(duplicates)}", field="assets")

    return settings


def save_config(settings: Settings, yaml_path: str):
    """Write settings to YAML in the layout load_config reads."""
    with open(yaml_path, 'w') as f:
        yaml.safe_dump(settings.to_dict(), f, sort_keys=False)
