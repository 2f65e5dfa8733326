"""Database engine, session factory, and declarative base.

All workspace-owned tables carry a `workspace_id` column; there is one
shared schema.

Session helpers:
  - get_db()               → request-scoped session for FastAPI routes
  - get_session_factory()  → factory used by cron fan-out, which opens one
                             session per workspace
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from crewtime.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    # pool settings only for postgres
    **(
        {}
        if settings.database_url.startswith("sqlite")
        else {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}
    ),
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    pass


# ── Session dependencies ────────────────────────────────────

async def get_db() -> AsyncSession:
    """Yield a session; commit on success, roll back on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """Return the session factory (overridden in tests)."""
    return async_session


async def init_db() -> None:
    """Create all tables. Used by tests and local development."""
    import crewtime.models  # noqa: F401 - register every model

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
