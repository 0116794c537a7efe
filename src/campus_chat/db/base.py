import asyncio
import os

from loguru import logger
from sqlalchemy import MetaData, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from campus_chat.core.config import get_settings

# Check if we're in production
IS_PRODUCTION = os.environ.get("APP_ENVIRONMENT") == "production"

SQLITE_FALLBACK_URL = "sqlite+aiosqlite:///./campus_chat.db"


def process_database_url(url: str | None) -> str:
    """Normalise a database URL to an async driver."""
    if not url:
        if IS_PRODUCTION:
            raise ValueError("DATABASE_URL must be set to a PostgreSQL URL in production")
        logger.warning("No database URL provided, falling back to SQLite")
        return SQLITE_FALLBACK_URL

    logger.info(f"Processing database URL (starts with): {url[:15]}...")

    if url.startswith('sqlite'):
        if IS_PRODUCTION:
            raise ValueError("SQLite database not allowed in production environment")
        if 'aiosqlite' not in url:
            url = url.replace('sqlite://', 'sqlite+aiosqlite://', 1)
        return url

    # For asyncpg, we need to use postgresql+asyncpg://
    if url.startswith('postgres://'):
        return url.replace('postgres://', 'postgresql+asyncpg://', 1)
    if url.startswith('postgresql://'):
        return url.replace('postgresql://', 'postgresql+asyncpg://', 1)

    if IS_PRODUCTION and not url.startswith('postgresql+asyncpg://'):
        raise ValueError("DATABASE_URL must be a PostgreSQL connection in production")

    logger.warning(f"Unrecognized database URL format: {url[:10]}...")
    return url


# Naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)


class Base(DeclarativeBase):
    """Base class for all models."""
    metadata = metadata


def create_engine(url: str | None = None, echo: bool = False) -> AsyncEngine:
    """Create an async engine with settings suited to the driver."""
    database_url = process_database_url(url or get_settings().db_url)

    if database_url.startswith('postgresql'):
        return create_async_engine(
            database_url,
            echo=echo,
            pool_pre_ping=True,               # Verify connections before using them
            pool_recycle=60,
            pool_timeout=120,
            pool_size=3,
            max_overflow=5,
            pool_use_lifo=True,
            connect_args={
                "timeout": 60,
                "command_timeout": 60,
                "server_settings": {"application_name": "campus_chat"},
                "statement_cache_size": 0,
            },
        )

    return create_async_engine(database_url, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession,
    )


async def init_models(engine: AsyncEngine, max_retries: int = 5, retry_delay: float = 2.0) -> MetaData:
    """Create missing tables, retrying with exponential backoff."""
    # Register every model on the metadata
    import campus_chat.db.models  # noqa: F401

    for attempt in range(1, max_retries + 1):
        try:
            logger.info(f"Attempt {attempt}/{max_retries} to initialize database")
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database models initialized successfully")
            return Base.metadata
        except SQLAlchemyError as e:
            if attempt == max_retries:
                logger.error(f"Database initialization failed after {max_retries} attempts: {e}")
                raise
            logger.warning(f"Database initialization failed (attempt {attempt}/{max_retries}): {e}. Retrying in {retry_delay}s")
            await asyncio.sleep(retry_delay)
            retry_delay *= 2  # Exponential backoff
