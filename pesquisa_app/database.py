# pesquisa_app/database.py
import logging
import os

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from . import config

logger = logging.getLogger(__name__)


DATABASE_URL = config.DATABASE_URL

if DATABASE_URL is None:
    logger.warning(
        "DATABASE_URL not found in the environment, falling back to a local SQLite database."
    )
    sqlite_db_path = os.path.join(os.path.dirname(__file__), "pesquisa_app_fallback.db")
    DATABASE_URL = f"sqlite+aiosqlite:///{sqlite_db_path}"


# echo=True prints every SQL statement SQLAlchemy emits. Keep it off in production.
engine = create_async_engine(DATABASE_URL, echo=config.SQL_ECHO)

AsyncSessionFactory = async_sessionmaker(
    bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
)

Base = declarative_base()


async def get_db_session(request: Request) -> AsyncSession:
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()  # commit at the end if nothing failed
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def create_db_and_tables(bind=None):
    """
    Creates missing tables. Alembic owns the schema for Postgres deployments;
    this keeps the SQLite fallback and throw-away databases usable without a
    migration step.
    """
    from . import models  # noqa: F401  registers the mappers on Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured.")
