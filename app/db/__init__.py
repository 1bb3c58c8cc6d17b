"""
Database Module
===============

Engine/session management and the declarative base.
"""

from app.db.base import Base, JSONType, TimestampMixin
from app.db.session import close_db, get_db, init_db

__all__ = ["Base", "JSONType", "TimestampMixin", "close_db", "get_db", "init_db"]
