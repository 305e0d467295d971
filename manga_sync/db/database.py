"""
Database connection and session management.
"""

import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from manga_sync.db.models import Base


def ensure_data_directory(db_url: str) -> None:
    """Ensure the data directory exists for a file-backed SQLite database."""
    if db_url.startswith("sqlite:///"):
        db_path = db_url.replace("sqlite:///", "")
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)


def _is_memory_sqlite(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:")


class Database:
    """
    Owns the engine and session factory for one database.

    Constructed once at startup and passed to the components that need it.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url

        engine_kwargs = {"echo": echo}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if _is_memory_sqlite(url):
                # One shared connection so every session sees the same tables
                engine_kwargs["poolclass"] = StaticPool
            else:
                ensure_data_directory(url)

        self.engine = create_engine(url, **engine_kwargs)
        self._session_factory = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False
        )

    def create_all(self) -> None:
        """Create all tables."""
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Close the database connection."""
        self.engine.dispose()


def init_db(url: str) -> Database:
    """Initialize the database and create tables."""
    database = Database(url)
    database.create_all()
    return database
