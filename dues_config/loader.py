"""
Settings loader (``dues_config.loader``).

Reads YAML settings files and merges an optional override file on top of the
packaged defaults.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range values  -> ``ValueError`` from the schema dataclasses.
"""

from pathlib import Path
from typing import Any

import yaml

from dues_config.schema import DuesSettings

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(override_path: Path | None = None) -> DuesSettings:
    """
    Load packaged defaults, apply ``override_path`` if given, and validate.

    Raises:
        FileNotFoundError: if ``override_path`` does not exist.
        ValueError: if a value fails schema validation.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if override_path is not None:
        data = merge_dicts(data, load_yaml_file(override_path))
    return DuesSettings.from_dict(data)
