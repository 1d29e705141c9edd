"""
Database session configuration.

This module handles database engine creation, session management and the
transaction boundary used by every ledger write.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from billing_backend.app.core.config import settings
from billing_backend.app.core.exceptions import AppException, StorageError

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    future=True,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Create declarative base for models
Base = declarative_base()


async def get_db():
    """
    FastAPI dependency for database sessions.
    
    Yields an async database session and ensures it's properly closed.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def transaction(db: AsyncSession, timeout: float = None) -> AsyncIterator[AsyncSession]:
    """
    Run a unit of work atomically.
    
    Commits when the block exits cleanly and rolls back on any exception, so a
    partially applied unit is never visible to other sessions. The whole unit
    (including the commit) must finish within ``timeout`` seconds, defaulting
    to ``settings.transaction_timeout_seconds``.
    
    Raises:
        StorageError: On timeout or any SQLAlchemy failure.
        AppException: Domain errors raised inside the block pass through unchanged.
        IntegrityError: Constraint violations pass through and surface as 409.
    """
    ceiling = settings.transaction_timeout_seconds if timeout is None else timeout
    try:
        async with asyncio.timeout(ceiling):
            try:
                yield db
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
    except (AppException, IntegrityError):
        raise
    except TimeoutError as exc:
        raise StorageError("Transaction timed out", details={"timeout_seconds": ceiling}) from exc
    except SQLAlchemyError as exc:
        raise StorageError("Transaction failed", details={"reason": type(exc).__name__}) from exc
