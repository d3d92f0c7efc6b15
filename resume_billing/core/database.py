import os
import asyncio
import random
from typing import AsyncGenerator, Dict, Any

from sqlalchemy import text
from sqlalchemy.exc import (
    SQLAlchemyError, OperationalError, InterfaceError, DisconnectionError,
    TimeoutError as PoolTimeoutError
)
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from resume_billing.core.config import settings
from resume_billing.log.logging import logger

# Connection-class failures worth retrying when opening a session
RETRYABLE_DB_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)

database_url = settings.database_url


def _engine_options(url: str) -> Dict[str, Any]:
    """Pool options for server databases; SQLite manages its own pool."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
        "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "10")),
        "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", "30")),
        "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", "1800")),
        "pool_pre_ping": True,
    }


engine_options = _engine_options(database_url)

logger.info(
    "Database initialization",
    event_type="database_init",
    dialect=database_url.split(":", 1)[0],
    **{k: v for k, v in engine_options.items() if k.startswith("pool")}
)

engine = create_async_engine(database_url, echo=False, **engine_options)

AsyncSessionLocal = async_sessionmaker(
    bind=engine, expire_on_commit=False, autoflush=False
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a database session for the current request.

    Opening the session is retried with exponential backoff and jitter on
    connection-class errors. Errors raised by the request handler itself are
    never retried here; the handler is responsible for rolling back its own
    unit of work.
    """
    max_retries = 3
    delay = 0.5
    max_delay = 5.0

    for attempt in range(max_retries + 1):
        try:
            session = AsyncSessionLocal()
            await session.connection()
        except RETRYABLE_DB_ERRORS as e:
            await session.close()
            if attempt >= max_retries:
                logger.error(
                    f"Database session could not be opened after {attempt + 1} attempts",
                    event_type="db_session_error",
                    attempts=attempt + 1,
                    error_type=type(e).__name__,
                )
                raise
            delay = min(delay * 2 * random.uniform(0.8, 1.2), max_delay)
            logger.warning(
                f"Database session attempt {attempt + 1}/{max_retries} failed, retrying in {delay:.2f}s",
                event_type="db_operation_retry",
                attempt=attempt + 1,
                delay=delay,
                error_type=type(e).__name__,
            )
            await asyncio.sleep(delay)
            continue

        try:
            yield session
        finally:
            await session.close()
        return


async def check_db_health() -> Dict[str, Any]:
    """Run a trivial query and report database reachability."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except SQLAlchemyError as e:
        logger.error("Database health check failed", event_type="db_health_error", error_type=type(e).__name__)
        return {"status": "unhealthy", "error_type": type(e).__name__}
