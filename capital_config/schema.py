"""
Settings schema (``capital_config.schema``).

Frozen dataclasses only.  Parsing and validation live in ``loader.py``.
"""

from __future__ import annotations

from dataclasses import dataclass

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class KernelSettings:
    """
    Runtime settings for the capital kernel.

    ``checksum`` identifies the settings content (environment overrides
    included) so a log line can be tied back to the exact configuration.
    """

    database_url: str
    echo_sql: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    log_level: str = "INFO"
    notifications_enabled: bool = True
    source: str | None = None
    checksum: str | None = None
