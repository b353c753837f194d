"""Database engines and session factories (local store and Cedar CMMS)."""
from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings

Base = declarative_base()

engine = create_engine(
    settings.DATABASE_URL,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


_cedar_engine: Engine | None = None


def get_cedar_engine() -> Engine:
    """Lazily build the Cedar engine; the external DB may be down at import time."""
    global _cedar_engine
    if _cedar_engine is None:
        if not settings.CEDAR_DATABASE_URL:
            raise RuntimeError("CEDAR_DATABASE_URL is not configured")
        _cedar_engine = create_engine(
            settings.CEDAR_DATABASE_URL,
            pool_size=settings.CEDAR_POOL_SIZE,
            pool_timeout=settings.CEDAR_POOL_TIMEOUT_SECONDS,
            pool_pre_ping=True,
            connect_args={"timeout": settings.CEDAR_CONNECT_TIMEOUT_SECONDS},
        )

        @event.listens_for(_cedar_engine, "connect")
        def _set_query_timeout(dbapi_connection, _connection_record):
            # pyodbc: per-statement timeout in seconds.
            dbapi_connection.timeout = settings.CEDAR_QUERY_TIMEOUT_SECONDS

    return _cedar_engine
