"""Database infrastructure for the capital kernel."""

from capital_kernel.db.base import Base, TrackedBase, UUIDString
from capital_kernel.db.engine import (
    clear_tables,
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
    is_postgres,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "clear_tables",
    "create_engine_from_url",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "is_postgres",
    "session_scope",
]
