"""
Database migration runner for authschema.

Applies or reverts the authentication schema through Alembic.
Can be called from application startup, a container entrypoint, or CLI.

Usage:
    # From Python:
    from migrate import run_migrations
    run_migrations()

    # From CLI:
    python migrate.py                      # upgrade to head
    python migrate.py downgrade            # revert to base
    python migrate.py current              # print the applied revision
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from alembic.runtime.migration import MigrationContext
from sqlalchemy import create_engine

logger = logging.getLogger(__name__)

# Directory where this file lives (project root)
PROJECT_ROOT = Path(__file__).parent.resolve()


def _get_alembic_config(db_url: Optional[str] = None) -> Config:
    """Create Alembic config pointing to alembic.ini in project root."""
    alembic_ini = PROJECT_ROOT / "alembic.ini"
    cfg = Config(str(alembic_ini))
    # Ensure script_location is absolute
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    if db_url:
        cfg.set_main_option("sqlalchemy.url", db_url)
    # Logging is configured by the host process, not alembic.ini
    cfg.attributes["configure_logger"] = False
    return cfg


def _get_database_url() -> str:
    """Get database URL from application config."""
    from config import get_config
    return get_config().database.connection_string


def get_current_revision(db_url: Optional[str] = None) -> Optional[str]:
    """Return the revision stamped in the database, None if unmigrated."""
    engine = create_engine(db_url or _get_database_url())
    try:
        with engine.connect() as conn:
            context = MigrationContext.configure(conn)
            return context.get_current_revision()
    finally:
        engine.dispose()


def _get_pending_migrations(db_url: str, alembic_cfg: Config) -> list:
    """Check for pending migrations.

    Returns list of pending revision IDs, empty if database is up to date.
    """
    current_rev = get_current_revision(db_url)

    script = ScriptDirectory.from_config(alembic_cfg)
    head_rev = script.get_current_head()

    if current_rev == head_rev:
        return []

    # Collect all revisions between current and head
    pending = []
    for rev in script.walk_revisions():
        if rev.revision == current_rev:
            break
        pending.append(rev.revision)

    return pending


def run_migrations(revision: str = "head", db_url: Optional[str] = None) -> bool:
    """Apply pending Alembic migrations up to ``revision``.

    Returns:
        True if migrations ran successfully (or no migrations needed),
        False if migrations failed.
    """
    try:
        db_url = db_url or _get_database_url()
        alembic_cfg = _get_alembic_config(db_url)

        pending = _get_pending_migrations(db_url, alembic_cfg)

        if not pending:
            logger.info("Database schema is up to date, no migrations needed")
            return True

        logger.info(
            f"Found {len(pending)} pending migration(s): {pending}"
        )

        logger.info("Applying database migrations...")
        command.upgrade(alembic_cfg, revision)
        logger.info("Database migrations completed successfully")
        return True

    except Exception as e:
        logger.error(f"Database migration failed: {e}")
        logger.error(
            "The application may not work correctly until migrations are applied. "
            "Check the database connection and try again."
        )
        return False


def rollback_migrations(revision: str = "base", db_url: Optional[str] = None) -> bool:
    """Revert migrations down to ``revision`` (drops the auth tables at base).

    Returns:
        True on success, False if the downgrade failed.
    """
    try:
        db_url = db_url or _get_database_url()
        alembic_cfg = _get_alembic_config(db_url)

        logger.warning(f"Reverting database migrations to {revision}")
        command.downgrade(alembic_cfg, revision)
        logger.info("Database downgrade completed successfully")
        return True

    except Exception as e:
        logger.error(f"Database downgrade failed: {e}")
        return False


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Apply or revert the authentication schema")
    parser.add_argument(
        "action",
        nargs="?",
        default="upgrade",
        choices=["upgrade", "downgrade", "current"],
        help="Migration action (default: upgrade)",
    )
    parser.add_argument(
        "--revision",
        default=None,
        help="Target revision (default: head for upgrade, base for downgrade)",
    )
    parser.add_argument("--database-url", default=None, help="Override the configured database URL")
    return parser


def main(argv: Optional[list] = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.action == "current":
        try:
            rev = get_current_revision(args.database_url)
        except Exception as e:
            logger.error(f"Could not read current revision: {e}")
            return 1
        print(rev or "base")
        return 0

    if args.action == "downgrade":
        success = rollback_migrations(args.revision or "base", args.database_url)
    else:
        success = run_migrations(args.revision or "head", args.database_url)
    return 0 if success else 1


def cli() -> None:
    """Console entry point; LOG_LEVEL sets the verbosity."""
    from config import get_config
    logging.basicConfig(
        level=get_config().log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    sys.exit(main())


if __name__ == "__main__":
    cli()
