"""
Database setup for Task Hunt.
Uses SQLite locally; use DATABASE_URL (e.g. Heroku Postgres) for production.
Sessions are acquired per call and always closed before the call returns.
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from taskhunt.engine.errors import LifecycleError, PersistenceError

logger = logging.getLogger(__name__)

Base = declarative_base()


def resolve_database_url(raw_url: str | None = None) -> str:
    """Heroku sets DATABASE_URL to postgres://; SQLAlchemy 2.x expects postgresql://"""
    raw_url = raw_url if raw_url is not None else os.environ.get("DATABASE_URL")
    if raw_url and raw_url.startswith("postgres://"):
        return raw_url.replace("postgres://", "postgresql://", 1)
    if raw_url:
        return raw_url
    db_dir = os.path.dirname(os.path.abspath(__file__))
    return f"sqlite:///{os.path.join(db_dir, 'taskhunt.db')}"


def make_engine(url: str) -> Engine:
    if url == "sqlite://" or url == "sqlite:///:memory:":
        # One shared connection so every session sees the same in-memory database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    # SQLite needs check_same_thread=False; Postgres does not use that arg
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables."""
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def transaction(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Open a session, begin a transaction and yield the session.
    Commits when the block finishes, rolls back on any exception, and closes the
    session on every exit path. Driver errors surface as PersistenceError.
    """
    session: Session = session_factory()
    try:
        with session.begin():
            yield session
    except LifecycleError:
        logger.debug("[tx-rollback] lifecycle error")
        raise
    except SQLAlchemyError as exc:
        logger.warning(f"[tx-abort] {exc}")
        raise PersistenceError(f"Transaction aborted: {exc}") from exc
    finally:
        session.close()
