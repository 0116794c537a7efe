"""
Utilities for database transactions, error translation and retry logic.
"""
import asyncio
import functools
import random
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_chat.core.errors import PersistenceError

T = TypeVar('T')


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """
    Open a session and a transaction around one store operation.

    Commits on success and rolls back on any error. Store failures are
    translated into ``PersistenceError``; domain errors raised inside the
    block propagate unchanged.
    """
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except SQLAlchemyError as e:
        logger.error(f"Store transaction failed: {e}")
        raise PersistenceError(str(e)) from e


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator to retry read-only async store operations with exponential backoff.

    Only ``PersistenceError`` is retried; domain errors pass straight through.

    Args:
        max_attempts: Maximum number of attempts
        base_delay: Base delay between retries in seconds
        max_delay: Maximum delay between retries in seconds

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except PersistenceError as e:
                    if attempt == max_attempts:
                        logger.error(f"{func.__name__} failed after {max_attempts} attempts: {e}")
                        raise

                    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                    # Add some jitter (±10%)
                    delay += 0.1 * delay * (2 * random.random() - 1)

                    logger.warning(f"{func.__name__} failed (attempt {attempt}/{max_attempts}): {e}. Retrying in {delay:.2f}s")
                    await asyncio.sleep(delay)

            raise RuntimeError("Unexpected error in retry logic")

        return wrapper
    return decorator
