"""Database connection and session management using SQLAlchemy async ORM"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy import Column, Uuid
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from app.core.config import settings
from app.core.exceptions import TransientStoreError
from app.core.time_intervals import utc_now
from app.core.types import UTCDateTime

logger = logging.getLogger(__name__)


class BaseModel:
    """Columns shared by every table"""

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False)


# Base class for declarative models
Base = declarative_base(cls=BaseModel)


def build_engine(database_url: str, echo: bool = False):
    """Create an async engine; pool sizing only applies to server databases"""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=20,
        max_overflow=30,
        pool_recycle=3600,
        pool_pre_ping=True,  # Verify connection health before using
    )


def build_session_factory(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Process-wide engine and session factory, owned by the application lifespan
engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
AsyncSessionLocal = build_session_factory(engine)


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run the enclosed block as a single atomic transaction on ``session``.

    Any read-only transaction the session autobegan earlier (for example while
    resolving the current user) is closed first so the block starts clean.
    Store failures are rolled back and re-raised as ``TransientStoreError``;
    domain errors propagate unchanged after the rollback.
    """
    try:
        if session.in_transaction():
            await session.commit()
        async with session.begin():
            yield session
    except SQLAlchemyError as e:
        logger.error(f"Transaction rolled back after store failure: {e}")
        raise TransientStoreError() from e


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI endpoints to get database session.

    Services open their own transactions on the session they are given, so
    this only guarantees cleanup.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db(bind=None) -> None:
    """Create tables that do not exist yet (schema migrations are managed elsewhere)"""
    import app.models  # noqa: F401  register mappers

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
