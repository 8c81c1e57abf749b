"""Database layer: declarative base, portable types, engine and sessions."""

from obligation_kernel.db.base import Base, TimestampedBase, UUIDString
from obligation_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from obligation_kernel.db.types import PortableDecimal, round_money

__all__ = [
    "Base",
    "TimestampedBase",
    "UUIDString",
    "PortableDecimal",
    "round_money",
    "build_engine",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
