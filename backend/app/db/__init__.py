"""Database package: declarative base and engine lifecycle."""

from app.db.base import Base, close_db, create_session_factory, init_db

__all__ = [
    "Base",
    "close_db",
    "create_session_factory",
    "init_db",
]
