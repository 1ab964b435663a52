import json
import logging
from decimal import Decimal
from datetime import datetime, date
from typing import AsyncGenerator
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from erp_receiving.config import settings
from erp_receiving.exceptions import PersistenceError


logger = logging.getLogger(__name__)


class CustomJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, datetime and UUID values in JSON columns."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        return super().default(obj)


def custom_json_dumps(obj):
    return json.dumps(obj, cls=CustomJSONEncoder)


def normalize_database_url(url: str) -> str:
    """Switch plain/asyncpg PostgreSQL URLs to the async psycopg driver."""
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://")
    return url


def build_engine(url: str, echo: bool = False):
    """Create the async engine with settings appropriate for the backend."""
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=echo,
            json_serializer=custom_json_dumps,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        url,
        echo=echo,
        json_serializer=custom_json_dumps,
        pool_pre_ping=True,  # Check connection health before use
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        connect_args={"connect_timeout": 30},
    )


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    The whole request runs in one transaction: committed when the endpoint
    returns, rolled back on any exception.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            logger.exception("Commit failed on constraint violation")
            raise PersistenceError() from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def flush_or_raise(db: AsyncSession, operation: str) -> None:
    """
    Flush pending changes, translating database errors into PersistenceError.

    The original error is logged server-side; callers only see a generic,
    retryable failure.
    """
    try:
        await db.flush()
    except SQLAlchemyError as e:
        logger.exception(f"Persistence failure during {operation}")
        raise PersistenceError(details={"operation": operation}) from e


async def init_db() -> None:
    """Create all tables registered on Base.metadata."""
    from erp_receiving import models  # noqa: F401

    logger.info(f"Registered {len(Base.metadata.tables)} tables")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
