# src/nova_webhooks/scripts/migrate.py
"""Apply the Alembic migrations to the configured database."""

from __future__ import annotations

import os

from alembic import command
from alembic.config import Config

from nova_webhooks.core.settings import settings

# Shipped inside the package so installed wheels can migrate too.
MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "migrations")


def build_config(database_url: str | None = None) -> Config:
    """Alembic config pointing at the packaged migrations folder."""
    cfg = Config()
    cfg.set_main_option("script_location", MIGRATIONS_DIR)
    cfg.set_main_option("sqlalchemy.url", database_url or settings.database_url_sync)
    return cfg


def run_upgrade_head(database_url: str | None = None) -> None:
    command.upgrade(build_config(database_url), "head")


if __name__ == "__main__":
    run_upgrade_head()
