"""Database manager and session utilities for Storywright."""

import os
import logging
from pathlib import Path
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import text

from storywright.c1_database_session.base import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_PATH = "data/storywright.db"


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """Manager for database operations."""

    def __init__(self, database_path: str = DEFAULT_DATABASE_PATH):
        """Initialize database connection."""
        self.database_path = database_path
        if database_path != ":memory:":
            Path(database_path).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            f"sqlite:///{database_path}",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
        event.listen(self.engine, "connect", _enable_foreign_keys)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_tables(self):
        """Create all database tables."""
        # Registers the mapped classes on Base.metadata
        import storywright.c1_prd_models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

        self._create_indexes()

    def _create_indexes(self):
        """Create the lookup indexes used by story ordering and memory queries."""
        statements = [
            "CREATE INDEX IF NOT EXISTS idx_prd_stories_prd_sort ON prd_stories(prd_id, sort_order)",
            "CREATE INDEX IF NOT EXISTS idx_prd_stories_workspace ON prd_stories(workspace_path, sort_order)",
            "CREATE INDEX IF NOT EXISTS idx_prds_workspace ON prds(workspace_path)",
            "CREATE INDEX IF NOT EXISTS idx_workspace_memories_lookup "
            "ON workspace_memories(workspace_path, confidence)",
        ]
        with self.engine.connect() as conn:
            for statement in statements:
                conn.execute(text(statement))
            conn.commit()
        logger.info("Created story workflow indexes")

    def get_session(self):
        """Get a database session."""
        return self.SessionLocal()

    def drop_tables(self):
        """Drop all database tables (for testing)."""
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self):
        """Release pooled connections."""
        self.engine.dispose()


def resolve_database_path(database_path: Optional[str] = None) -> str:
    """Resolve the database path from argument, environment, then settings."""
    if database_path:
        return database_path
    env_path = os.environ.get("STORYWRIGHT_DB")
    if env_path:
        return env_path
    from storywright.core.config import get_settings
    return str(get_settings().database.database_path)


@contextmanager
def get_db(database_path: Optional[str] = None):
    """Provide a transactional scope around a series of operations."""
    db_manager = DatabaseManager(resolve_database_path(database_path))
    db = db_manager.get_session()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
        db_manager.dispose()
