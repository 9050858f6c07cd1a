"""
Migration Runner - applies pending Alembic migrations at startup.

Enabled with RUN_MIGRATIONS_ON_STARTUP; deployments that migrate out of band
leave it off.
"""

from pathlib import Path

from sqlalchemy import Engine, create_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from studycards.config import settings

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def sync_database_url(url: str) -> str:
    """Alembic runs synchronously: swap the asyncpg driver for psycopg2."""
    return url.replace("asyncpg", "psycopg2")


def _current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def _head_revision(alembic_cfg: Config) -> str | None:
    return ScriptDirectory.from_config(alembic_cfg).get_current_head()


def run_migrations() -> None:
    """
    Upgrade the schema to head if it is behind.

    Raises:
        RuntimeError: Migration failed
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    sync_url = sync_database_url(settings.database_url)
    alembic_cfg.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))

    engine = create_engine(sync_url)
    try:
        current = _current_revision(engine)
        head = _head_revision(alembic_cfg)

        if current == head:
            logger.info("database_schema_current", revision=current)
            return

        logger.info("database_migration_started", from_revision=current, to_revision=head)
        command.upgrade(alembic_cfg, "head")
        logger.info("database_migration_completed", revision=_current_revision(engine))
    except Exception as e:
        logger.error("database_migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
    finally:
        engine.dispose()
