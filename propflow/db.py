# propflow/db.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .config import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str) -> Engine:
    return create_engine(url, pool_pre_ping=True)


engine: Engine = make_engine(settings.database_url)

# Money and status rows are re-read after commit, never served from a stale identity map.
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)


def use_database(url: str) -> Engine:
    """
    Point the process at another database.

    Rebinds SessionLocal, so the API dependency, the Celery tasks and the CLI
    all follow. Returns the new engine; the old one is disposed.
    """
    global engine
    old = engine
    engine = make_engine(url)
    SessionLocal.configure(bind=engine)
    old.dispose()
    return engine


def get_db():
    """
    Request-scoped session.

    A failed statement leaves the transaction unusable on Postgres until a
    rollback, and a release or status change that raised midway must not
    leak half its rows into the next request. Roll back on any exception,
    always close.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None) -> None:
    # models must be imported so their tables register on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
