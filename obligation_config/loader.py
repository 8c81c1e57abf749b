"""
Configuration Loader (``obligation_config.loader``).

Responsibility
--------------
Reads YAML settings files and flattens their sections into
``EngineSettings``.  Runtime code calls
``obligation_config.get_active_settings()`` rather than this module.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or a non-mapping document  -> ``ValueError``.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from obligation_config.schema import EngineSettings
from obligation_kernel.utils.hashing import hash_payload

# YAML section/key -> EngineSettings field
_KEY_MAP: dict[tuple[str, ...], str] = {
    ("database_url",): "database_url",
    ("distribution", "max_depth"): "max_depth",
    ("distribution", "step_budget"): "step_budget",
    ("money", "decimal_places"): "decimal_places",
    ("money", "share_factor_places"): "share_factor_places",
    ("reconciliation", "overpay_policy"): "overpay_policy",
    ("logging", "level"): "log_level",
    ("logging", "echo_sql"): "echo_sql",
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level, got {type(data).__name__}")
    return data


def flatten(data: dict[str, Any], source: str = "<settings>") -> dict[str, Any]:
    """Map nested YAML sections onto EngineSettings field names."""
    flat: dict[str, Any] = {}
    for key, value in data.items():
        if (key,) in _KEY_MAP:
            flat[_KEY_MAP[(key,)]] = value
            continue
        if not isinstance(value, dict):
            raise ValueError(f"{source}: unknown setting {key!r}")
        for sub_key, sub_value in value.items():
            field_name = _KEY_MAP.get((key, sub_key))
            if field_name is None:
                raise ValueError(f"{source}: unknown setting {key}.{sub_key}")
            flat[field_name] = sub_value
    return flat


def build_settings(*layers: dict[str, Any]) -> EngineSettings:
    """Later layers override earlier ones; the result is validated."""
    merged: dict[str, Any] = {}
    for layer in layers:
        merged.update(layer)
    known = {f.name for f in fields(EngineSettings)}
    unknown = set(merged) - known
    if unknown:
        raise ValueError(f"Unknown settings: {sorted(unknown)}")
    if isinstance(merged.get("log_level"), str):
        merged["log_level"] = merged["log_level"].upper()
    if isinstance(merged.get("overpay_policy"), str):
        merged["overpay_policy"] = merged["overpay_policy"].lower()
    return EngineSettings(**merged).validate()


def compute_checksum(settings: EngineSettings) -> str:
    """SHA-256 over the canonical JSON form of the effective settings."""
    return hash_payload(settings.as_dict())
