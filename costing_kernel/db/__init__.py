"""Database layer - engine, base classes and column types."""

from costing_kernel.db.base import UUID, Base, UUIDString
from costing_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from costing_kernel.db.types import (
    Amount,
    Currency,
    ExactDecimal,
    Rate,
    UTCDateTime,
    round_amount,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "UUIDString",
    "UUID",
    "UTCDateTime",
    "ExactDecimal",
    "Amount",
    "Currency",
    "Rate",
    "round_amount",
]
