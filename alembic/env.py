# alembic/env.py
import logging
import os
import sys
from logging.config import fileConfig

from sqlalchemy import create_engine

from alembic import context

# Put the project root on sys.path so 'pesquisa_app' imports from a checkout
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

# The alembic Config object gives access to the values in alembic.ini
config = context.config

# Logging from alembic.ini
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
logger = logging.getLogger("alembic.env")

# Importing the config module loads .env; database resolves the URL and fallback
from pesquisa_app import models  # noqa: E402
from pesquisa_app.database import DATABASE_URL  # noqa: E402

target_metadata = models.Base.metadata


def sync_url(url: str) -> str:
    """Alembic migrates with a synchronous engine, drop the async driver suffix."""
    if url is None:
        raise ValueError("DATABASE_URL is not set. Configure it in .env.")
    for suffix in ("+asyncpg", "+aiosqlite"):
        url = url.replace(suffix, "")
    return url


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Configures the context with just a URL, so no DBAPI is needed; calls to
    context.execute() emit the SQL to the script output.
    """
    offline_url = sync_url(DATABASE_URL)
    logger.info("Running offline migrations against %s", offline_url)
    context.configure(
        url=offline_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode against a live connection."""
    online_url = sync_url(DATABASE_URL)
    connectable = create_engine(online_url)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
