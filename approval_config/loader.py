"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into the frozen
``approval_config.schema`` dataclasses.  Callers use
``approval_config.get_active_config()`` instead of this module.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a typo never silently
  falls back to a default.
* Values are type-checked; ``bool`` is never accepted where ``int`` is
  expected.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key, wrong type or out-of-range value  -> ``ValueError``.
"""

from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    ApprovalSettings,
    DatabaseSettings,
    LoggingSettings,
    WorkflowSettings,
)

_SECTIONS: dict[str, type] = {
    "database": DatabaseSettings,
    "logging": LoggingSettings,
    "workflow": WorkflowSettings,
}

_TYPES: dict[str, type] = {
    "str": str,
    "bool": bool,
    "int": int,
}

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _parse_section(name: str, data: Any, cls: type) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"{name}: expected a mapping, got {type(data).__name__}")

    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"{name}: unknown keys {unknown}")

    values: dict[str, Any] = {}
    for key, value in data.items():
        expected = _TYPES[known[key].type]
        if expected is int and isinstance(value, bool):
            raise ValueError(f"{name}.{key}: expected int, got bool")
        if not isinstance(value, expected):
            raise ValueError(
                f"{name}.{key}: expected {expected.__name__}, got {type(value).__name__}"
            )
        values[key] = value
    return cls(**values)


def parse_settings(data: dict[str, Any], source: str | None = None) -> ApprovalSettings:
    """
    Build ``ApprovalSettings`` from a parsed YAML mapping.

    Missing sections and keys take their dataclass defaults.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"unknown configuration sections {unknown}")

    sections = {
        name: _parse_section(name, data.get(name), cls)
        for name, cls in _SECTIONS.items()
    }
    settings = ApprovalSettings(source=source, **sections)
    _validate(settings)
    return settings


def _validate(settings: ApprovalSettings) -> None:
    if not settings.database.url.strip():
        raise ValueError("database.url must not be empty")
    if settings.database.pool_size < 1:
        raise ValueError("database.pool_size must be >= 1")
    if settings.database.max_overflow < 0:
        raise ValueError("database.max_overflow must be >= 0")
    if settings.logging.level.upper() not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}")
    if settings.workflow.max_conflict_retries < 1:
        raise ValueError("workflow.max_conflict_retries must be >= 1")


def load_settings(path: Path) -> ApprovalSettings:
    """Load and validate settings from a YAML file."""
    return parse_settings(load_yaml_file(path), source=str(path))


def level_number(settings: ApprovalSettings) -> int:
    return logging.getLevelName(settings.logging.level.upper())
