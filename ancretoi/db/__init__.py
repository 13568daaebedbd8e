"""
Database Module
===============

Provides database session management and base model.
"""

from ancretoi.db.base import Base
from ancretoi.db.session import get_db, init_db, close_db

__all__ = ["Base", "get_db", "init_db", "close_db"]
