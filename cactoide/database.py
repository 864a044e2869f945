"""Engine, sessions and the connectivity probe for the Cactoide database."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings

# Seconds SQLite waits on a locked database before raising.
SQLITE_BUSY_TIMEOUT = 15


def build_engine(database_path: str | Path) -> Engine:
    return create_engine(
        f"sqlite:///{database_path}",
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        future=True,
    )


engine = build_engine(settings.database_path)
DATABASE_URL = str(engine.url)
SessionLocal = scoped_session(
    sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )
)


@contextmanager
def get_session():
    """Context manager returning a SQLAlchemy session."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping_database() -> None:
    """Round-trip ``SELECT 1`` on the current engine. Raises on failure."""
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
