"""Database engine and session factory."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.config import settings


class Base(DeclarativeBase):
    pass


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Request sessions are used from FastAPI's threadpool.
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_recycle": settings.db_pool_recycle,
    }


def get_engine(url: str | None = None) -> Engine:
    url = url or settings.database_url
    return create_engine(url, pool_pre_ping=True, **_engine_options(url))


SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)


def get_db():
    """Yield a request-scoped session.

    Services commit or roll back their own work; this only guarantees the
    session is closed when the request ends.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
