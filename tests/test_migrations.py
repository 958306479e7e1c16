"""The Alembic history builds the same schema as the ORM metadata."""

import os

from sqlalchemy import inspect

import nova_webhooks
from nova_webhooks.db.session import Base, build_engine
from nova_webhooks.scripts.migrate import MIGRATIONS_DIR, build_config, run_upgrade_head


def test_migrations_ship_inside_the_package():
    package_dir = os.path.dirname(nova_webhooks.__file__)

    assert os.path.commonpath([MIGRATIONS_DIR, package_dir]) == package_dir
    assert os.path.isfile(os.path.join(MIGRATIONS_DIR, "env.py"))
    assert os.path.isfile(os.path.join(MIGRATIONS_DIR, "script.py.mako"))
    assert os.listdir(os.path.join(MIGRATIONS_DIR, "versions"))


def test_config_points_at_migrations(tmp_path):
    url = f"sqlite:///{tmp_path / 'cfg.db'}"
    cfg = build_config(url)

    assert cfg.get_main_option("script_location") == MIGRATIONS_DIR
    assert cfg.get_main_option("sqlalchemy.url") == url


def test_upgrade_head_creates_all_tables(tmp_path, monkeypatch):
    monkeypatch.delenv("ALEMBIC_URL", raising=False)
    url = f"sqlite:///{tmp_path / 'migrated.db'}"

    run_upgrade_head(url)

    engine = build_engine(url)
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        assert set(Base.metadata.tables) <= tables
        for name, table in Base.metadata.tables.items():
            columns = {col["name"] for col in inspector.get_columns(name)}
            assert columns == set(table.columns.keys()), name
        uniques = inspector.get_unique_constraints("webhook_delivery_logs")
        assert any(u["name"] == "uq_delivery_logs_subscription_event" for u in uniques)
    finally:
        engine.dispose()
