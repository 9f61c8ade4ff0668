"""Database manager and session utilities for Sidequest."""

import os
import logging
from pathlib import Path
from typing import Dict, Optional
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import text

from sidequest.c1_database_session.base import Base

logger = logging.getLogger(__name__)

# Environment override used by tests and one-off scripts
DB_PATH_ENV = "SIDEQUEST_DB"

_managers: Dict[str, "DatabaseManager"] = {}


class DatabaseManager:
    """Manager for database operations."""

    def __init__(self, database_path: str = "sidequest.db"):
        """Initialize database connection.

        ``database_path`` is either a SQLite file path or a full SQLAlchemy URL.
        """
        self.database_path = str(database_path)
        if "://" in self.database_path:
            self.engine = create_engine(self.database_path, echo=False)
        else:
            parent = Path(self.database_path).parent
            if str(parent) not in ("", "."):
                parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{self.database_path}",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=False,
            )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_tables(self):
        """Create all database tables."""
        # Models register themselves on Base at import time
        import sidequest.core.database  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        self._create_indexes()

    def _create_indexes(self):
        """Create indexes used by the tree, session and finalization queries."""
        statements = [
            """
            CREATE INDEX IF NOT EXISTS idx_sidequest_tickets_quest_parent
            ON sidequest_tickets(quest_id, parent_ticket_id, sort_order)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_sidequest_tickets_quest_status
            ON sidequest_tickets(quest_id, status)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_sidequest_sessions_quest_status
            ON sidequest_implementation_sessions(quest_id, status)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_sidequest_ticket_history_ticket_id
            ON sidequest_ticket_history(ticket_id)
            """,
        ]
        try:
            with self.engine.connect() as conn:
                for statement in statements:
                    conn.execute(text(statement))
                conn.commit()
                logger.info("Created indexes for sidequest tables")
        except Exception as e:
            logger.debug(f"Index creation (may already exist): {e}")

    def get_session(self):
        """Get a database session."""
        return self.SessionLocal()

    def drop_tables(self):
        """Drop all database tables (for testing)."""
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self):
        """Release pooled connections."""
        self.engine.dispose()


def resolve_database_path() -> str:
    """Return the database location from the environment or settings."""
    override = os.environ.get(DB_PATH_ENV)
    if override:
        return override

    from sidequest.core.config import get_settings

    return str(get_settings().database.database_path)


def get_manager(database_path: Optional[str] = None) -> DatabaseManager:
    """Return the cached manager for a database location."""
    if database_path is None:
        database_path = resolve_database_path()
    manager = _managers.get(database_path)
    if manager is None:
        manager = DatabaseManager(database_path)
        _managers[database_path] = manager
    return manager


def dispose_managers():
    """Dispose and forget every cached manager."""
    for manager in _managers.values():
        manager.dispose()
    _managers.clear()


@contextmanager
def get_db(database_path: Optional[str] = None):
    """Provide a transactional scope around a series of operations."""
    db = get_manager(database_path).get_session()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
