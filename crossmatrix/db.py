"""Run history database.

The history lives in one SQLAlchemy database named by ``Settings.db_url``
(SQLite by default). Tables are created on first use, so every command that
touches history opens it through :func:`open_history`.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from crossmatrix.config import Settings, get_settings

HistorySessions = sessionmaker[Session]


class Base(DeclarativeBase):
    """Declarative base for the run history models."""


def history_engine(db_url: str) -> Engine:
    """Create the engine for a history database URL.

    For file-backed SQLite the parent directory is created, and connections
    may be used from the orchestrator's worker threads.
    """
    url = make_url(db_url)
    connect_args: dict[str, object] = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, connect_args=connect_args)


def create_history_tables(engine: Engine) -> None:
    """Create the matrix_runs and target_runs tables if missing."""
    # Importing the models registers them on Base.metadata
    from crossmatrix.matrix import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def open_history(settings: Settings | None = None) -> HistorySessions:
    """Open the configured history database and return a session factory."""
    settings = settings or get_settings()
    engine = history_engine(settings.db_url)
    create_history_tables(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def history_session(sessions: HistorySessions) -> Iterator[Session]:
    """Session that commits on success and rolls back on error."""
    session = sessions()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "Base",
    "HistorySessions",
    "create_history_tables",
    "history_engine",
    "history_session",
    "open_history",
]
