"""Store checks and alembic auto-migration used by `homechef serve` and /health."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, Engine

from homechef.core.config import settings

logger = logging.getLogger(__name__)

ALEMBIC_VERSION_TABLE = "alembic_version"
# pg_advisory_lock key shared by every replica running migrations.
MIGRATION_LOCK_ID = 4631_0001


@dataclass(frozen=True)
class MigrationStatus:
    current_heads: tuple[str, ...]
    head_revisions: tuple[str, ...]

    @property
    def is_up_to_date(self) -> bool:
        return set(self.current_heads) == set(self.head_revisions)


class MigrationError(RuntimeError):
    """Raised when automatic migrations fail to reach head."""


def check_store(engine: Engine) -> None:
    """Round-trip SELECT 1; raises the driver error when the store is unreachable."""
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def alembic_config(url: str | None = None) -> Config:
    root = Path(__file__).resolve().parents[2]
    alembic_ini = root / "alembic.ini"
    if not alembic_ini.is_file():
        raise FileNotFoundError(f"Alembic config not found at {alembic_ini}")
    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(root / "alembic"))
    config.set_main_option("sqlalchemy.url", url or settings.DB_URL)
    # Keep the serving process's logging configuration.
    config.attributes["skip_logging_config"] = True
    return config


def _as_tuple(values: Iterable[str] | None) -> tuple[str, ...]:
    return tuple(values) if values else ()


def _current_heads(connection: Connection) -> tuple[str, ...]:
    if ALEMBIC_VERSION_TABLE not in inspect(connection).get_table_names():
        return ()
    return _as_tuple(MigrationContext.configure(connection).get_current_heads())


def get_migration_status(engine: Engine) -> MigrationStatus:
    script = ScriptDirectory.from_config(alembic_config(engine.url.render_as_string(hide_password=False)))
    with engine.connect() as connection:
        current = _current_heads(connection)
    return MigrationStatus(current_heads=current, head_revisions=_as_tuple(script.get_heads()))


def ensure_migrations(engine: Engine, auto_migrate: bool) -> MigrationStatus:
    """Upgrade to head when allowed; raise MigrationError if head is not reached."""
    status = get_migration_status(engine)
    if status.is_up_to_date or not auto_migrate:
        return status

    logger.info("Migrating store from %s to %s", status.current_heads, status.head_revisions)
    _upgrade_to_head(engine)
    status = get_migration_status(engine)
    if not status.is_up_to_date:
        raise MigrationError("Database migrations did not reach head after auto-upgrade.")
    return status


def _upgrade_to_head(engine: Engine) -> None:
    config = alembic_config(engine.url.render_as_string(hide_password=False))
    if engine.dialect.name != "postgresql":
        command.upgrade(config, "head")
        return

    with engine.connect() as connection, _migration_lock(connection):
        config.attributes["connection"] = connection
        command.upgrade(config, "head")
        if connection.in_transaction():
            connection.commit()


@contextlib.contextmanager
def _migration_lock(connection: Connection) -> Iterator[None]:
    """Serialise concurrent replicas on a session-level advisory lock."""
    connection.execute(text("SELECT pg_advisory_lock(:lock_id)"), {"lock_id": MIGRATION_LOCK_ID})
    if connection.in_transaction():
        connection.commit()
    try:
        yield
    finally:
        try:
            connection.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"), {"lock_id": MIGRATION_LOCK_ID}
            )
            if connection.in_transaction():
                connection.commit()
        except Exception as exc:
            logger.warning("Failed to release migration lock: %s", type(exc).__name__)
