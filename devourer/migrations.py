"""Schema migrations.

Wraps alembic so the CLI never deals with its config objects. Revision
scripts live in `migrations/` at the project root; there is no alembic.ini.
"""

from __future__ import annotations

import shutil
from typing import Optional, Tuple

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect

from . import database
from .config import PROJECT_ROOT
from .logging_config import get_logger

logger = get_logger(__name__)

SCRIPT_LOCATION = PROJECT_ROOT / "migrations"


def _alembic_cfg() -> AlembicConfig:
    cfg = AlembicConfig()
    cfg.set_main_option("script_location", str(SCRIPT_LOCATION))
    return cfg


def head_revision() -> str:
    return ScriptDirectory.from_config(_alembic_cfg()).get_current_head() or "unknown"


def current_revision() -> Optional[str]:
    """Revision stamped in the database, None when missing or unstamped."""
    if not database.DB_PATH.exists():
        return None
    with database.get_engine().connect() as conn:
        if not inspect(conn).has_table("alembic_version"):
            return None
        return MigrationContext.configure(conn).get_current_revision()


def get_status() -> Tuple[Optional[str], str]:
    """Return (current_revision, head_revision)."""
    return current_revision(), head_revision()


def backup_db() -> None:
    """Copy library.db to library.db.bak, replacing the previous backup."""
    if database.DB_PATH.exists():
        backup = database.DB_PATH.with_suffix(".db.bak")
        shutil.copy2(database.DB_PATH, backup)
        logger.debug(f"Database backed up to {backup}")


def upgrade(backup: bool = True) -> None:
    """Upgrade the database to head, backing it up first."""
    if backup:
        backup_db()
    alembic_command.upgrade(_alembic_cfg(), "head")


def stamp_if_needed() -> None:
    """Mark a database created by `init_db()` as being at head."""
    if not database.DB_PATH.exists() or current_revision() is not None:
        return
    alembic_command.stamp(_alembic_cfg(), "head")
