"""
Alembic migration environment, async-safe

- opens the application's *async* engine
- unwraps it to a regular sync Connection for Alembic
- no `metadata.create_all()`: the schema is created by migrations only
"""

from logging.config import fileConfig
import asyncio
import sys
import pathlib

# make sure "simdash" is importable when Alembic is invoked from a checkout
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from alembic import context  # noqa: E402
from simdash.db.database import engine  # noqa: E402
from simdash.models import Base  # noqa: E402

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
target_metadata = Base.metadata


def run_migrations_sync(sync_connection):
    """Runs inside a real synchronous Connection that Alembic understands."""
    context.configure(
        connection=sync_connection,
        target_metadata=target_metadata,
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online():
    async with engine.begin() as async_conn:
        await async_conn.run_sync(run_migrations_sync)


if context.is_offline_mode():
    raise SystemExit("Offline migrations are not supported, run online only.")
else:
    asyncio.run(run_migrations_online())
