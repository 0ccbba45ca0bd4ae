import json
from contextlib import asynccontextmanager
from decimal import Decimal
from datetime import datetime, date
from typing import AsyncGenerator, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from psycopg.types.json import set_json_dumps

from billing_engine.config import settings


# Custom JSON encoder that handles Decimal, datetime, UUID, etc.
class CustomJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, datetime, UUID and other types."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            # Keep money exact on the wire
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


def build_database_url(url: str) -> str:
    """Switch plain PostgreSQL URLs to the async psycopg driver."""
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://")
    return url


def create_engine_for(url: str, **overrides):
    """Create an async engine with pool settings appropriate for the backend."""
    if url.startswith("sqlite"):
        options = dict(
            echo=settings.DEBUG,
            json_serializer=custom_json_dumps,
            connect_args={"check_same_thread": False},
        )
    else:
        options = dict(
            echo=settings.DEBUG,
            json_serializer=custom_json_dumps,
            pool_pre_ping=True,  # Check connection health before use
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            connect_args={"connect_timeout": 30},
        )
    options.update(overrides)
    return create_async_engine(build_database_url(url), **options)


engine = create_engine_for(settings.DATABASE_URL)

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


@asynccontextmanager
async def get_db_session(
    session_factory: Optional[async_sessionmaker] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional session scope.

    Commits when the block exits cleanly, rolls back on any error
    (including cancellation) and always returns the connection to the pool.
    """
    factory = session_factory or async_session_factory
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


async def init_db(bind=None) -> None:
    """Initialize database tables."""
    # Import all models to register them with Base.metadata
    from billing_engine.models import document  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
