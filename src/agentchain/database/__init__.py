"""Relational persistence: engine, ORM tables and repositories."""

from agentchain.database.connection import (
    Base,
    close_db,
    create_engine_for_url,
    create_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "Base",
    "close_db",
    "create_engine_for_url",
    "create_session_factory",
    "init_db",
    "session_scope",
]
