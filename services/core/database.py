"""
Database Configuration Module
Async engine, session factory and declarative base
"""
import os

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

# Database URL from environment
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")


def configure_sqlite(engine: AsyncEngine) -> None:
    """
    Make SQLite honour BEGIN/SAVEPOINT the way PostgreSQL does.

    aiosqlite (like pysqlite) defers BEGIN on its own, which breaks
    session.begin_nested(). We take over transaction control instead.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine; SQLite URLs get the transaction fix applied"""
    if url.startswith("sqlite"):
        new_engine = create_async_engine(url, echo=False, **kwargs)
        configure_sqlite(new_engine)
        return new_engine

    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,              # Verify connections before use
        pool_recycle=3600,               # Recycle connections after 1 hour
        **kwargs
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(DATABASE_URL)

# Async session factory
AsyncSessionLocal = build_session_factory(engine)

# Base for models
Base = declarative_base()


async def init_models(bind: AsyncEngine = None) -> None:
    """Create all tables (no migration tooling, create_all is idempotent)"""
    import models  # noqa: F401  registers the tables on Base.metadata

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db_connections():
    """
    Gracefully close all database connections.
    Call this on application shutdown.
    """
    await engine.dispose()
