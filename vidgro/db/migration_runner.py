"""
Migration Runner - applies Alembic migrations before the API starts.

Invoked at deploy time (`python -m vidgro.db.migration_runner`) so that
multiple API replicas never race on schema changes.
"""

from pathlib import Path

from sqlalchemy import Engine, create_engine

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from vidgro.config import settings
from vidgro.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)

ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def sync_database_url(url: str | None = None) -> str:
    """Alembic runs synchronously; swap the asyncpg driver for psycopg2."""
    return (url or settings.database_url).replace("+asyncpg", "+psycopg2")


def _alembic_config() -> Config:
    cfg = Config(str(ALEMBIC_INI_PATH))
    cfg.set_main_option("sqlalchemy.url", sync_database_url().replace("%", "%%"))
    return cfg


def _current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def run_migrations() -> None:
    """Upgrade the schema to head if it is behind."""
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    cfg = _alembic_config()
    head = ScriptDirectory.from_config(cfg).get_current_head()
    engine = create_engine(sync_database_url())
    try:
        current = _current_revision(engine)
        if current == head:
            logger.info("schema_up_to_date", revision=current)
            return

        logger.info("migrations_starting", current=current, head=head)
        command.upgrade(cfg, "head")
        logger.info("migrations_complete", revision=_current_revision(engine))
    except Exception as exc:
        logger.error("migration_failed", error=str(exc))
        raise RuntimeError(f"Database migration failed: {exc}") from exc
    finally:
        engine.dispose()


if __name__ == "__main__":
    setup_logging()
    run_migrations()
