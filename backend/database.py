# database.py - Async engine and sessions for Residency Desk
import logging
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

import config

logger = logging.getLogger("residency-desk.database")


def _engine_options(url: str) -> dict:
    options = {"echo": config.SQL_ECHO, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # aiosqlite runs every session on its own worker thread
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(pool_size=config.DB_POOL_SIZE, max_overflow=5, pool_recycle=1800)
    return options


engine = create_async_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))

# Sessions keep loaded rows after commit; the lifecycle store re-reads with
# populate_existing wherever freshness matters.
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def get_db_session():
    """One session per request (FastAPI Depends). Uncommitted work is rolled back."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_context():
    """Session for jobs and scripts; commits on a clean exit."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_database() -> str:
    """'connected', or a short error string for the health endpoint."""
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return f"error: {str(e)[:100]}"
    return "connected"


async def init_db():
    """Create any missing tables (development and tests; production uses alembic)."""
    from models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready ({engine.url.get_backend_name()})")


async def close_db():
    await engine.dispose()
