"""
Database engine configuration and session management.

Current: SQLite (async with aiosqlite)
Future: PostgreSQL (switch DATABASE_URL to postgresql+asyncpg://...)
"""
from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from tenant_rbac.core import config


def build_engine(url: str = config.SQLALCHEMY_DATABASE_URL) -> AsyncEngine:
    return create_async_engine(
        url,
        # NullPool for SQLite to avoid connection pool issues
        poolclass=NullPool if url.startswith("sqlite") else None,
        echo=False,  # Set to True for SQL query logging during development
        future=True,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    Usage in FastAPI routes:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            result = await db.execute(select(Item))
            return result.scalars().all()
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(bind: AsyncEngine | None = None):
    """
    Create all tables. Called on application startup and by the seed script.
    """
    from tenant_rbac.core.database.base import Base

    # Import all models to ensure they're registered with SQLAlchemy
    from tenant_rbac.features.companies.models import Company  # noqa: F401
    from tenant_rbac.features.users.models import User  # noqa: F401
    from tenant_rbac.features.permissions.models import (  # noqa: F401
        Permission, Role, UserPermission
    )

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
