from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy import text
import asyncio
import logging
from functools import wraps

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with SQLite-specific optimizations."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {
            "timeout": 30,  # Increase timeout for locked database
            "check_same_thread": False,
        }
    return create_async_engine(
        database_url,
        echo=echo,
        connect_args=connect_args,
        poolclass=NullPool,  # Disable connection pooling for SQLite
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the async session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine):
    """Initialize database tables and configure SQLite for WAL mode."""
    async with engine.begin() as conn:
        if engine.dialect.name == "sqlite":
            # Enable WAL mode for better concurrency
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            # Set busy timeout
            await conn.execute(text("PRAGMA busy_timeout=30000"))  # 30 seconds
        # Create tables
        await conn.run_sync(Base.metadata.create_all)


def with_db_retry(max_retries: int = 3, delay: float = 0.5):
    """Decorator to retry database operations on lock errors."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            from sqlalchemy.exc import OperationalError

            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except OperationalError as e:
                    if "database is locked" not in str(e) or attempt == max_retries - 1:
                        raise
                    wait_time = delay * (2 ** attempt)  # Exponential backoff
                    logger.warning(
                        "Database locked, retrying in %ss (attempt %d/%d)",
                        wait_time, attempt + 1, max_retries,
                    )
                    await asyncio.sleep(wait_time)

        return wrapper
    return decorator
