#!/usr/bin/env python3
"""Database bootstrap: wait for the database, then run Alembic migrations.

Always `alembic upgrade head` on startup. If migrations fail, fail fast
(don't start the API with an unknown schema).
"""

import logging
import os
import sys
import time

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("run_migrations")


def check_db_ready() -> bool:
    from core.database import check_db_connection

    return check_db_connection()


def _get_alembic_config():
    """Load Alembic config for programmatic migrations."""
    from alembic.config import Config

    here = os.path.dirname(os.path.abspath(__file__))
    cfg = Config(os.path.join(here, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(here, "alembic"))
    return cfg


def alembic_upgrade_head() -> None:
    """Apply all pending migrations."""
    from alembic import command

    command.upgrade(_get_alembic_config(), "head")


def main(max_retries: int = 30) -> None:
    logger.info("Waiting for database to be ready...")
    for attempt in range(1, max_retries + 1):
        if check_db_ready():
            logger.info("Database is ready")
            break
        logger.warning(f"Database is unavailable - sleeping (attempt {attempt}/{max_retries})")
        time.sleep(1)
    else:
        logger.error("Database is not ready after maximum retries")
        sys.exit(1)

    try:
        alembic_upgrade_head()
    except Exception:
        logger.exception("Alembic upgrade failed")
        sys.exit(1)
    logger.info("Migrations completed successfully")


if __name__ == '__main__':
    import core.logging  # noqa: F401  configures handlers
    main()
