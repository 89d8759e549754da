"""
Database layer: SQLAlchemy models, engine/session management and query helpers.
"""

from backend_careconnect.database.connection import (
    get_engine,
    init_db,
    reset_engine_for_test,
    session_scope,
)
from backend_careconnect.database.models import Base

__all__ = [
    "Base",
    "get_engine",
    "init_db",
    "reset_engine_for_test",
    "session_scope",
]
