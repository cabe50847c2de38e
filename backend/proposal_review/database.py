"""SQLAlchemy 2.0 async engine, session factory, and declarative base.

The engine is built from :class:`~proposal_review.config.Settings` when the
application is created and stored on ``app.state.database``; there is no
module-level engine.

Usage in routers::

    from proposal_review.deps import get_db
    from sqlalchemy.ext.asyncio import AsyncSession

    @router.get("/items")
    async def list_items(db: AsyncSession = Depends(get_db)):
        result = await db.execute(select(Item))
        return result.scalars().all()
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from proposal_review.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Declarative Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared declarative base for all SQLAlchemy ORM models."""

    pass


# ---------------------------------------------------------------------------
# Engine + Session Factory
# ---------------------------------------------------------------------------
class Database:
    """Owns the async engine and the session factory for one application."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        url = settings.database_url
        if url.startswith("sqlite"):
            # One shared connection so in-memory databases survive across sessions
            engine = create_async_engine(
                url,
                echo=settings.sqlalchemy_echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
            logger.info("SQLAlchemy async engine configured for SQLite")
        else:
            engine = create_async_engine(
                url,
                pool_size=10,
                max_overflow=20,
                pool_pre_ping=True,
                pool_recycle=300,
                echo=settings.sqlalchemy_echo,
            )
            logger.info("SQLAlchemy async engine configured for %s", engine.dialect.name)
        return cls(engine)

    async def create_schema(self) -> None:
        """Create all tables (local development and tests; production uses Alembic)."""
        # Register every model on the metadata before create_all
        import proposal_review.models.db  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on success and rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        await self.engine.dispose()
