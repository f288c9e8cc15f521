import json
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from datetime import datetime, date
from typing import AsyncGenerator
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm.exc import StaleDataError
from psycopg.types.json import set_json_dumps

from pharma_wms.config import settings
from pharma_wms.core.exceptions import ConcurrencyConflict


logger = logging.getLogger(__name__)


# Custom JSON encoder that handles Decimal, datetime, UUID, etc.
class CustomJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, datetime, UUID and other types."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        return super().default(obj)


def custom_json_dumps(obj):
    """Custom JSON dumps function for psycopg and SQLAlchemy JSON columns."""
    return json.dumps(obj, cls=CustomJSONEncoder)


# Configure psycopg to use our custom JSON encoder globally
set_json_dumps(custom_json_dumps)

# SQLSTATE serialization_failure and deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def is_retryable_error(error: DBAPIError) -> bool:
    """True for lock conflicts the database resolved by aborting this transaction."""
    orig = error.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(orig)


def serialize_sqlite_writers(async_engine) -> None:
    """
    Open every SQLite transaction with BEGIN IMMEDIATE.

    SQLite ignores FOR UPDATE; taking the write lock at BEGIN makes
    concurrent sessions queue the way row locks do on PostgreSQL.
    """
    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, echo: bool = False):
    """Create an async engine with driver and pool settings for the URL."""
    if database_url.startswith("sqlite"):
        sqlite_engine = create_async_engine(
            database_url,
            echo=echo,
            future=True,
            json_serializer=custom_json_dumps,
            connect_args={"check_same_thread": False},
        )
        serialize_sqlite_writers(sqlite_engine)
        return sqlite_engine

    if database_url.startswith("postgresql+asyncpg://"):
        database_url = database_url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
    elif database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+psycopg://")

    return create_async_engine(
        database_url,
        echo=echo,
        future=True,
        json_serializer=custom_json_dumps,
        pool_pre_ping=True,  # Check connection health before use
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
    )


def build_session_factory(bind) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Create async session factory
async_session_factory = build_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_session():
    """Context manager for getting a database session outside a request."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def atomic(session: AsyncSession):
    """
    Run a block of writes as one transaction on the given session.

    Commits when the block finishes; rolls back on any error so that no
    partial write survives. Version-stamp mismatches, uniqueness races,
    deadlocks and serialization failures surface as ConcurrencyConflict so
    the caller can re-read and retry.
    """
    try:
        yield session
        await session.commit()
    except StaleDataError as e:
        await session.rollback()
        logger.warning(f"Optimistic lock failed: {e}")
        raise ConcurrencyConflict(
            "Row was modified by another transaction; re-read and retry",
            details={"reason": "stale_version"},
        ) from e
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"Integrity race detected: {e.orig}")
        raise ConcurrencyConflict(
            "Concurrent write collided with an existing row; re-read and retry",
            details={"reason": "integrity"},
        ) from e
    except DBAPIError as e:
        await session.rollback()
        if not is_retryable_error(e):
            raise
        logger.warning(f"Transaction aborted by lock conflict: {e.orig}")
        raise ConcurrencyConflict(
            "Transaction lost a lock conflict with another writer; retry",
            details={"reason": "lock_conflict"},
        ) from e
    except Exception:
        await session.rollback()
        raise


async def init_db(bind=None) -> None:
    """Initialize database tables."""
    # Import all models to register them with Base.metadata
    from pharma_wms import models  # noqa: F401

    logger.info(f"Registered {len(Base.metadata.tables)} tables")

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
