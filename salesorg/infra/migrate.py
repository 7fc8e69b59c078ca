from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def run_upgrade_head(database_url: str | None = None) -> None:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(ALEMBIC_INI.parent / "infra" / "migrations"))
    if database_url is not None:
        config.set_main_option("sqlalchemy.url", database_url)
    logger.info("Upgrading schema to head")
    command.upgrade(config, "head")


if __name__ == "__main__":
    run_upgrade_head()
