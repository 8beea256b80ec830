"""Alembic revisions apply cleanly on the default SQLite database."""

import importlib.util
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

VERSIONS = Path(__file__).resolve().parents[1] / "alembic" / "orders" / "versions"


def load_revision(filename):
    spec = importlib.util.spec_from_file_location(f"orders_{Path(filename).stem}", VERSIONS / filename)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_initial_orders_revision_upgrades_and_downgrades_on_sqlite(tmp_path):
    """JSON columns fall back to plain JSON outside PostgreSQL."""

    revision = load_revision("0001_initial.py")
    engine = create_engine(f"sqlite:///{tmp_path / 'migrated.db'}")

    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            revision.upgrade()
        assert {"orders", "transactions", "payment_attempts", "payment_retries"} <= set(inspect(conn).get_table_names())

        with Operations.context(MigrationContext.configure(conn)):
            revision.downgrade()
        assert inspect(conn).get_table_names() == []
    engine.dispose()
