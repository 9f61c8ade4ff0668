"""Database session management for Sidequest."""

from sidequest.c1_database_session.base import Base
from sidequest.c1_database_session.database_manager import DatabaseManager, get_db

__all__ = ["Base", "DatabaseManager", "get_db"]
