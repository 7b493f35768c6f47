"""Database layer - engine, base classes, column types, and immutability."""

from ledger_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from ledger_kernel.db.types import (
    CENT,
    ZERO,
    MinorUnitAmount,
    from_minor_units,
    to_amount,
    to_minor_units,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "MinorUnitAmount",
    "CENT",
    "ZERO",
    "to_amount",
    "to_minor_units",
    "from_minor_units",
]
