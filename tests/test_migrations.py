"""Alembic auto-migration against a fresh SQLite store."""

from sqlalchemy import inspect

from homechef.core.migrations import check_store, ensure_migrations, get_migration_status
from homechef.db.session import build_engine


def _fresh_engine(tmp_path):
    return build_engine(f"sqlite+pysqlite:///{tmp_path / 'migrated.db'}")


def test_auto_migrate_reaches_head(tmp_path):
    engine = _fresh_engine(tmp_path)
    check_store(engine)

    status = ensure_migrations(engine, True)

    assert status.is_up_to_date
    assert status.current_heads == ("0001_order_core",)
    tables = set(inspect(engine).get_table_names())
    assert {
        "orders",
        "order_items",
        "order_status_history",
        "tips",
        "cancellation_policies",
        "cancellation_analytics",
        "webhook_endpoints",
        "webhook_deliveries",
    } <= tables

    # Second run is a no-op.
    assert ensure_migrations(engine, True) == status
    engine.dispose()


def test_without_auto_migrate_reports_pending(tmp_path):
    engine = _fresh_engine(tmp_path)

    status = ensure_migrations(engine, False)

    assert not status.is_up_to_date
    assert status.current_heads == ()
    assert status.head_revisions == ("0001_order_core",)
    assert "orders" not in inspect(engine).get_table_names()
    assert get_migration_status(engine) == status
    engine.dispose()
