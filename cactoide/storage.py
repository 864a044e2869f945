"""Schema management: Alembic upgrades for fresh, untracked and tracked databases."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect

from .config import settings
from .database import engine

logger = logging.getLogger("uvicorn.error")

SCRIPT_LOCATION = Path(__file__).resolve().parent / "alembic"


def init_db() -> None:
    for action in upgrade_database(make_backup=False):
        logger.info("Database: %s", action)


def _alembic_config() -> Config:
    config = Config()
    config.set_main_option("script_location", str(SCRIPT_LOCATION).replace("%", "%%"))
    config.attributes["engine"] = engine
    return config


def head_revision() -> str | None:
    return ScriptDirectory.from_config(_alembic_config()).get_current_head()


def current_revision() -> str | None:
    """Revision stored in ``alembic_version``; None when the database is untracked."""
    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Bring the schema to the latest revision.

    Tables created outside Alembic (``metadata.create_all``) are stamped rather
    than migrated. Returns a list of the actions taken.
    """
    actions: list[str] = []
    db_path = Path(settings.database_path)

    if make_backup and db_path.exists():
        backup_path = db_path.with_suffix(db_path.suffix + ".bak")
        shutil.copy(db_path, backup_path)
        actions.append(f"Backup created at {backup_path}")

    revision = current_revision()
    head = head_revision()
    config = _alembic_config()

    if revision is None and not inspect(engine).has_table("events"):
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    elif revision is None:
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    elif revision == head:
        actions.append(f"Schema already at {head}")
    else:
        command.upgrade(config, "head")
        actions.append(f"Applied Alembic migrations {revision} -> {head}")

    return actions
