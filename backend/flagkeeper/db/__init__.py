"""
Database Package

This package contains database connection and session management.
"""

from flagkeeper.db.base import Base
from flagkeeper.db.session import (
    SessionLocal,
    create_db_engine,
    create_session_factory,
    engine,
    transaction,
)

__all__ = [
    "Base",
    "SessionLocal",
    "create_db_engine",
    "create_session_factory",
    "engine",
    "transaction",
]
