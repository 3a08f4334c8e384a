"""
Settings loader (``capital_config.loader``).

Responsibility
--------------
Reads a YAML settings file, applies environment overrides and parses the
result into a frozen ``KernelSettings``.  Callers go through
``capital_config.get_settings()``; this module is its implementation.

Invariants enforced
-------------------
* Every parse error raises ``ValueError`` naming the offending key.
* Unknown top-level sections are rejected.
* ``compute_checksum`` is deterministic over the merged settings data.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML or wrong value types  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from capital_config.schema import LOG_LEVELS, KernelSettings

ENV_DATABASE_URL = "CAPITAL_KERNEL_DATABASE_URL"
ENV_LOG_LEVEL = "CAPITAL_KERNEL_LOG_LEVEL"

_SECTIONS = ("database", "logging", "notifications")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML settings file.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the file is not valid YAML or not a mapping.
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError(f"Malformed settings file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping, got {type(data).__name__}")
    return data


def _section(data: Mapping[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Settings section '{name}' must be a mapping")
    return value


def _bool(section: str, key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be true or false, got {value!r}")
    return value


def _positive_int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{section}.{key} must be a non-negative integer, got {value!r}")
    return value


def _log_level(value: Any) -> str:
    level = str(value).upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {', '.join(LOG_LEVELS)}, got {value!r}")
    return level


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Return a copy of ``data`` with environment overrides applied."""
    merged = dict(data)
    for name in _SECTIONS:
        merged[name] = dict(_section(data, name))
    if environ.get(ENV_DATABASE_URL):
        merged["database"]["url"] = environ[ENV_DATABASE_URL]
    if environ.get(ENV_LOG_LEVEL):
        merged["logging"]["level"] = environ[ENV_LOG_LEVEL]
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_settings(data: dict[str, Any], source: str | None = None) -> KernelSettings:
    """
    Parse merged settings data into ``KernelSettings``.

    Raises:
        ValueError: on unknown sections, a missing database URL or a value
            of the wrong type.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown settings section(s): {', '.join(unknown)}")

    database = _section(data, "database")
    logging_section = _section(data, "logging")
    notifications = _section(data, "notifications")

    url = database.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ValueError("database.url is required")

    return KernelSettings(
        database_url=url.strip(),
        echo_sql=_bool("database", "echo_sql", database.get("echo_sql", False)),
        pool_size=_positive_int("database", "pool_size", database.get("pool_size", 20)),
        max_overflow=_positive_int("database", "max_overflow", database.get("max_overflow", 10)),
        pool_timeout=_positive_int("database", "pool_timeout", database.get("pool_timeout", 30)),
        log_level=_log_level(logging_section.get("level", "INFO")),
        notifications_enabled=_bool(
            "notifications", "enabled", notifications.get("enabled", True)
        ),
        source=source,
        checksum=compute_checksum(data),
    )
