"""Database layer - engine, base classes, and column types."""

from ledger_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from ledger_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from ledger_kernel.db.types import MoneyAmount, from_minor_units, to_minor_units

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
    "MoneyAmount",
    "from_minor_units",
    "to_minor_units",
]
