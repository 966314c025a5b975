import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from servicedesk.core.config import settings
from servicedesk.core.exceptions import ConflictError, TransactionTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

engine_kwargs = {"echo": settings.DEBUG, "pool_pre_ping": True}
if not settings.DATABASE_URL.startswith("sqlite"):
    engine_kwargs.update(
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )

# Create async engine
engine = create_async_engine(settings.DATABASE_URL, **engine_kwargs)

# Create async session factory
AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for models
Base = declarative_base()


# Dependency for getting DB session
async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def run_in_transaction(
    session: AsyncSession,
    work: Callable[[], Awaitable[T]],
    timeout: Optional[float] = None,
) -> T:
    """
    Run ``work`` and commit it as a single unit.

    Any exception rolls the session back and propagates. The whole unit,
    commit included, must finish within ``timeout`` seconds (defaults to
    TRANSACTION_TIMEOUT_SECONDS); otherwise nothing is written and
    TransactionTimeoutError is raised. A concurrent update detected by a
    row version check surfaces as ConflictError.
    """
    deadline = settings.TRANSACTION_TIMEOUT_SECONDS if timeout is None else timeout

    async def unit() -> T:
        result = await work()
        await session.commit()
        return result

    try:
        return await asyncio.wait_for(unit(), timeout=deadline)
    except asyncio.TimeoutError:
        await session.rollback()
        logger.error(f"Transaction exceeded {deadline}s deadline and was rolled back")
        raise TransactionTimeoutError(
            "The operation could not be completed in time, no changes were saved"
        ) from None
    except StaleDataError as e:
        await session.rollback()
        logger.warning(f"Concurrent modification detected: {e}")
        raise ConflictError(
            "The record was modified by another request, please retry"
        ) from e
    except BaseException:
        await session.rollback()
        raise
