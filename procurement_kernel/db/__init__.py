"""Database infrastructure for the procurement kernel."""

from procurement_kernel.db.base import Base, TrackedBase, UUIDString
from procurement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from procurement_kernel.db.types import Money, round_money

__all__ = [
    "Base",
    "Money",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "is_postgres",
    "reset_engine",
    "round_money",
    "session_scope",
]
