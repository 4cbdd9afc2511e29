"""qphase_ode: Core Utilities
-------------------------
YAML loading and dictionary merging used by the configuration layer.

Public API
----------
``load_yaml_file`` : Load a YAML mapping with error handling
``deep_merge_dicts`` : Recursive dictionary merge (override wins)
"""

from pathlib import Path
from typing import Any

import yaml

from .errors import QPSConfigError

__all__ = ["load_yaml_file", "deep_merge_dicts"]


def load_yaml_file(path: str | Path) -> dict[str, Any]:
    """Load a YAML file that must contain a mapping.

    Raises
    ------
    QPSConfigError
        - [510] File not found.
        - [511] YAML could not be parsed or is not a mapping.

    """
    path = Path(path)
    if not path.exists():
        raise QPSConfigError(f"[510] File not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise QPSConfigError(f"[511] Failed to parse YAML file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise QPSConfigError(f"[511] YAML file {path} must contain a mapping")
    return dict(data)


def deep_merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, with override values taking precedence."""
    result = dict(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge_dicts(result[key], value)
        else:
            result[key] = value
    return result
