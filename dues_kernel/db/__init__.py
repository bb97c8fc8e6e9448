"""Database layer - engine, base classes, types."""

from dues_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from dues_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from dues_kernel.db.types import Money, round_money

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "round_money",
]
