"""
Database configuration and session management.
"""

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Base class for SQLAlchemy models
Base = declarative_base()


def _engine_options(url: str, pool_size: int, max_overflow: int, pool_timeout: int) -> dict:
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # every session must see the same in-memory database
            options["poolclass"] = StaticPool
        return options

    options = {
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
    }
    if url.startswith("mysql"):
        options["connect_args"] = {
            "connect_timeout": 10,
            "read_timeout": 30,
            "write_timeout": 30
        }
    return options


class Database:
    """
    Owns the engine (and its bounded connection pool) and the session factory.

    One instance is built per application and stored on ``app.state``.
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        echo: bool = False
    ):
        self.url = url
        self.engine = create_engine(
            url,
            echo=echo,
            **_engine_options(url, pool_size, max_overflow, pool_timeout)
        )
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine
        )

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self):
        self.engine.dispose()


# Dependency to get database session
def get_db(request: Request):
    """
    Database session dependency for FastAPI.
    Yields a session from the app's Database and closes it after use.
    """
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
