"""
capital_config -- single public entrypoint for capital kernel settings.

Responsibility:
    ``get_settings()`` is the only place settings files and the
    ``CAPITAL_KERNEL_*`` environment variables are read.  It returns a
    frozen ``KernelSettings``.  ``configure_logging_from_settings()``
    bridges the log level into ``capital_kernel.logging_config``.

Architecture position:
    Configuration sits above ``capital_kernel``.  The kernel never imports
    from this package; the orchestrator's ``from_settings`` reads a
    ``KernelSettings`` by attribute.

Failure modes:
    - ``FileNotFoundError`` when an explicit path does not exist.
    - ``ValueError`` for malformed YAML or invalid values.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from capital_config.loader import apply_env_overrides, load_yaml_file, parse_settings
from capital_config.schema import KernelSettings
from capital_kernel.logging_config import configure_logging

_logger = logging.getLogger("capital_kernel.config")

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "defaults.yaml"


def get_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> KernelSettings:
    """Load settings from ``path`` (default: the packaged defaults.yaml).

    Environment overrides are read from ``environ`` (default ``os.environ``).
    Every successful call logs a ``capital_config_loaded`` trace with the
    settings checksum.
    """
    settings_path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    data = load_yaml_file(settings_path)
    merged = apply_env_overrides(data, os.environ if environ is None else environ)
    settings = parse_settings(merged, source=str(settings_path))

    _logger.info(
        "capital_config_loaded",
        extra={
            "source": settings.source,
            "checksum": settings.checksum,
            "log_level": settings.log_level,
        },
    )
    return settings


def configure_logging_from_settings(settings: KernelSettings) -> None:
    """Configure the kernel's JSON logging at the settings' level."""
    configure_logging(level=settings.log_level)


__all__ = [
    "DEFAULT_SETTINGS_PATH",
    "KernelSettings",
    "configure_logging_from_settings",
    "get_settings",
]
