"""Shared pytest fixtures: one in-memory database, no real peers."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from cactoide import api, crud, database, federation, storage
from cactoide.models import Base, Event


def _bind(engine, session_factory) -> None:
    """Point every module that captured the engine or session factory at the test ones."""
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    api.SessionLocal = session_factory


@pytest.fixture(scope="session", autouse=True)
def db_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(bind=engine, autoflush=False, future=True, expire_on_commit=False)
    )
    _bind(engine, session_factory)
    Base.metadata.create_all(bind=engine)
    yield engine
    session_factory.remove()
    engine.dispose()


@pytest.fixture(autouse=True)
def empty_tables(db_engine):
    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)


@pytest.fixture(autouse=True)
def no_configured_peers(monkeypatch):
    """Tests opt into peers explicitly; a local cactoide.toml must not leak in."""
    monkeypatch.setattr(
        federation, "settings", replace(federation.settings, federation_instances=())
    )


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def make_event():
    """Create and commit an event; keyword overrides go to ``crud.create_event``."""

    def factory(name: str = "Neighbourhood Picnic", **overrides) -> Event:
        values = {
            "date": date(2030, 6, 1),
            "time": time(18, 0),
            "location": "Town Hall",
            "location_type": "text",
            "user_id": "user_owner",
        }
        values.update(overrides)
        db = database.SessionLocal()
        try:
            event = crud.create_event(db, name=name, **values)
            db.commit()
            return event
        finally:
            db.close()

    return factory
