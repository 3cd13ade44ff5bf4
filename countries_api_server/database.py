"""
Database engine and session management.
"""
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from countries_api_server.config import settings
from countries_api_server.db_models import Base


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for SQLite or PostgreSQL.

    SQLite connections get foreign key enforcement so that deleting a key
    cascades to its usage rows, and a generous busy timeout so concurrent
    usage writes wait for the lock instead of failing.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


engine = build_engine(settings.database_url, echo=settings.database_echo)
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine = None) -> None:
    """Create all tables."""
    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI session dependency.

    Write handlers commit before returning, since this exit code may run after
    the response has been sent. The commit here only covers leftovers.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Context manager form of a single unit of work."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
