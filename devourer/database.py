"""SQLite engine and session helpers.

One engine is shared by the API, scan threads and watcher workers; each of
them opens its own short-lived session through `open_session()`.
"""

from __future__ import annotations

from pathlib import Path

from sqlmodel import SQLModel, Session, create_engine

from .config import DATA_DIR

DB_PATH = DATA_DIR / "library.db"


def _create_engine(db_path: Path):
    # Sessions cross threads (scan workers, watcher, request handlers).
    return create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})


engine = _create_engine(DB_PATH)


def get_engine():
    """Return the global engine instance."""
    return engine


def open_session() -> Session:
    """Open a session on the current engine; use it as a context manager."""
    return Session(get_engine())


def init_db() -> None:
    """Create missing tables and switch the database to WAL journaling."""
    from . import models  # noqa: F401

    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")

    SQLModel.metadata.create_all(engine)

