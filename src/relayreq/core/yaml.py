"""YAML configuration loading for relayreq.

Safe YAML file loading with ``yaml.safe_load`` for the optional
``--config`` file whose values become defaults for
[ReqConfig][relayreq.services.configs.ReqConfig]; command-line flags override
them.

Examples:
    ```python
    from relayreq.core.yaml import load_yaml

    defaults = load_yaml("relayreq.yaml")
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Load and parse a YAML configuration file.

    Args:
        config_path: Path to the YAML file (absolute or relative).

    Returns:
        Parsed configuration as a nested dictionary. Returns an empty dict
        if the file exists but contains no data.

    Raises:
        ConfigurationError: If the file does not exist, contains invalid YAML,
            or its top level is not a mapping.
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return data
