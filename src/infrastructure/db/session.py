# src/infrastructure/db/session.py

from contextlib import contextmanager
from typing import Iterator, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.infrastructure.config import Settings


# -----------------------------
# Base Class for Models
# -----------------------------
class Base(DeclarativeBase):
    pass


# -----------------------------
# Engine + Session Factory
# -----------------------------
def create_session_factory(settings: Settings) -> Tuple[Engine, sessionmaker[Session]]:
    """Return an engine/session factory pair for the configured database."""

    url = settings.database_url
    engine_kwargs: dict = {
        "echo": settings.sql_echo,
        "future": True,
    }

    if url.startswith("sqlite"):
        # Writers wait on the file lock instead of failing straight away.
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if url.endswith(":memory:"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_pre_ping"] = True

    engine: Engine = create_engine(url, **engine_kwargs)

    session_factory = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    return engine, session_factory


# -----------------------------
# Unit of work
# -----------------------------
@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
