"""Database engine, session factory and schema bootstrap for the alert tables."""

from __future__ import annotations

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from market_integrity.db.base import Base

_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _ensure_psycopg_driver(url: str) -> str:
    """Rewrite postgresql:// to postgresql+psycopg:// for psycopg v3."""
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def init_engine(url: str, **kwargs) -> Engine:
    """Create the process-wide engine and session factory.

    Postgres engines pre-ping pooled connections; alert writes can arrive
    after long quiet stretches.
    """
    global _engine, _SessionLocal
    url = _ensure_psycopg_driver(url)
    if url.startswith("postgresql"):
        kwargs.setdefault("pool_pre_ping", True)
    _engine = create_engine(url, **kwargs)
    _SessionLocal = sessionmaker(bind=_engine, expire_on_commit=False)
    return _engine


def get_engine() -> Engine:
    """Return the global engine (must call init_engine first)."""
    if _engine is None:
        raise RuntimeError("Database engine not initialised — call init_engine() first")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Return the global session factory (must call init_engine first)."""
    if _SessionLocal is None:
        raise RuntimeError("Database engine not initialised — call init_engine() first")
    return _SessionLocal


def create_tables(engine: Engine) -> None:
    """Create the alert schema (Postgres only) and any missing tables."""
    import market_integrity.db.tables  # noqa: F401

    if engine.dialect.name == "postgresql":
        schemas = {t.schema for t in Base.metadata.tables.values() if t.schema}
        with engine.begin() as conn:
            for schema in sorted(schemas):
                conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))
    Base.metadata.create_all(engine)


def dispose_engine() -> None:
    """Close pooled connections and forget the global engine."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
