"""Shared test fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import BigInteger, Integer, JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import market_integrity.adapters.sources  # noqa: F401 — trigger @register decorators
import market_integrity.db.tables  # noqa: F401
from market_integrity.db.base import Base

T0 = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock for detectors; starts at T0 and only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with all tables created.

    Patches JSONB→JSON and BigInteger→Integer for SQLite compatibility.
    StaticPool keeps every session on the one in-memory connection.
    """
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # SQLite doesn't support schemas, JSONB, or BigInteger autoincrement
    for table in Base.metadata.tables.values():
        table.schema = None
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()
            if isinstance(col.type, BigInteger):
                col.type = Integer()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(db_engine):
    session = Session(db_engine)
    yield session
    session.close()
