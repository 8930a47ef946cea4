"""Test Alembic migrations: upgrade, downgrade, and structural checks.

Runs against a throw-away SQLite file. Set MIGRATION_DATABASE_URL to run the
same checks against PostgreSQL (the database must be empty).
"""

import os

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import DatabaseError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ALEMBIC_INI = os.path.join(os.path.dirname(__file__), "..", "..", "alembic.ini")

EXPECTED_TABLES = {
    "workflows",
    "workflow_levels",
    "approval_signatures",
    "approval_notifications",
    "roles",
    "role_partition_assignments",
}


@pytest.fixture
def database_url(tmp_path):
    return os.environ.get("MIGRATION_DATABASE_URL", f"sqlite:///{tmp_path / 'migrations.db'}")


@pytest.fixture
def alembic_cfg(database_url):
    cfg = Config(ALEMBIC_INI)
    cfg.set_main_option("sqlalchemy.url", database_url)
    cfg.attributes["configure_logger"] = False
    yield cfg
    command.downgrade(cfg, "base")


@pytest.fixture
def db(database_url):
    engine = create_engine(database_url)
    yield engine
    engine.dispose()


def _insert_signature(conn):
    conn.execute(text(
        "INSERT INTO approval_signatures "
        "(workflow_id, entity_id, action, role, level, created_at) "
        "VALUES (149, '1', 'created', '100', 0, CURRENT_TIMESTAMP)"
    ))


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.db
class TestMigrations:
    """Run upgrade → verify → downgrade → verify cycle."""

    def test_upgrade_creates_all_tables(self, alembic_cfg, db):
        command.upgrade(alembic_cfg, "head")

        tables = set(inspect(db).get_table_names())

        assert EXPECTED_TABLES <= tables
        assert "alembic_version" in tables

    def test_upgrade_is_idempotent(self, alembic_cfg):
        command.upgrade(alembic_cfg, "head")
        command.upgrade(alembic_cfg, "head")

    def test_signature_columns(self, alembic_cfg, db):
        command.upgrade(alembic_cfg, "head")

        cols = {c["name"] for c in inspect(db).get_columns("approval_signatures")}

        assert cols == {
            "id", "workflow_id", "entity_id", "action", "role", "level",
            "remarks", "actor_id", "actor_name", "created_at",
        }

    def test_notification_columns(self, alembic_cfg, db):
        command.upgrade(alembic_cfg, "head")

        inspector = inspect(db)
        cols = {c["name"] for c in inspector.get_columns("approval_notifications")}
        uniques = {u["name"] for u in inspector.get_unique_constraints("approval_notifications")}

        assert "version" in cols
        assert "uq_approval_notifications_entity" in uniques

    def test_duplicate_step_refused(self, alembic_cfg, db):
        command.upgrade(alembic_cfg, "head")

        with db.begin() as conn:
            _insert_signature(conn)
        with pytest.raises(DatabaseError):
            with db.begin() as conn:
                _insert_signature(conn)

    def test_signatures_are_append_only(self, alembic_cfg, db):
        command.upgrade(alembic_cfg, "head")
        with db.begin() as conn:
            _insert_signature(conn)

        with pytest.raises(DatabaseError, match="immutable"):
            with db.begin() as conn:
                conn.execute(text("UPDATE approval_signatures SET remarks = 'edited'"))
        with pytest.raises(DatabaseError, match="immutable"):
            with db.begin() as conn:
                conn.execute(text("DELETE FROM approval_signatures"))

        with db.connect() as conn:
            assert conn.execute(text("SELECT COUNT(*) FROM approval_signatures")).scalar() == 1

    def test_downgrade_removes_tables(self, alembic_cfg, db):
        command.upgrade(alembic_cfg, "head")
        command.downgrade(alembic_cfg, "base")

        tables = set(inspect(db).get_table_names())

        assert not (EXPECTED_TABLES & tables)
