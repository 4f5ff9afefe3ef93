"""
Relational store: models and session plumbing.
"""

from .connection import (
    create_db_engine,
    create_session_factory,
    session_scope,
    init_db,
    drop_db,
    check_database,
)

__all__ = [
    "create_db_engine",
    "create_session_factory",
    "session_scope",
    "init_db",
    "drop_db",
    "check_database",
]
