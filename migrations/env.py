"""Alembic environment for Devourer.

Runs against `devourer.database.engine` and the SQLModel table metadata, so
migrations always target the database the application uses.
"""

from __future__ import annotations

from alembic import context
from sqlmodel import SQLModel

from devourer import database
from devourer import models  # noqa: F401  (registers the tables)

target_metadata = SQLModel.metadata


def run_migrations_offline() -> None:
    """Emit SQL for `alembic upgrade --sql` without touching the database."""
    context.configure(
        url=f"sqlite:///{database.DB_PATH}",
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    # SQLite cannot ALTER most constraints; batch mode recreates tables.
    with database.get_engine().connect() as conn:
        context.configure(
            connection=conn,
            target_metadata=target_metadata,
            render_as_batch=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
