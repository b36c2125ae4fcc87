"""Database layer — engine, session factory, ORM base."""

from market_integrity.db.base import Base
from market_integrity.db.engine import (
    create_tables,
    dispose_engine,
    get_engine,
    get_session_factory,
    init_engine,
)

__all__ = [
    "Base",
    "create_tables",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "init_engine",
]
