"""
Tests for the initial Alembic migration
"""
import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect, text

MIGRATION_PATH = Path(__file__).parent.parent / "alembic" / "versions" / "001_initial.py"


@pytest.fixture
def migration():
    spec = importlib.util.spec_from_file_location("migration_001_initial", MIGRATION_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'migration.db'}")
    yield engine
    engine.dispose()


def run(engine, step):
    with engine.begin() as conn:
        conn.execute(text("PRAGMA foreign_keys=ON"))
        ctx = MigrationContext.configure(conn)
        with Operations.context(ctx):
            step()


class TestInitialMigration:
    """Test suite for 001_initial"""

    def test_upgrade_creates_tables(self, migration, engine):
        run(engine, migration.upgrade)

        inspector = inspect(engine)
        assert {"users", "api_keys", "api_key_usage"} <= set(inspector.get_table_names())

        columns = {column["name"] for column in inspector.get_columns("api_keys")}
        assert columns == {
            "id", "user_id", "key", "name", "created_at",
            "expires_at", "is_active", "last_used_at", "usage_count",
        }
        assert "idx_api_key_usage_lookup" in {i["name"] for i in inspector.get_indexes("api_key_usage")}

    def test_defaults_and_cascade(self, migration, engine):
        """Test that server defaults apply and usage rows follow their key"""
        run(engine, migration.upgrade)

        with engine.begin() as conn:
            conn.execute(text("PRAGMA foreign_keys=ON"))
            conn.execute(text(
                "INSERT INTO users (username, email, password_hash) VALUES ('u', 'u@example.com', 'x')"
            ))
            conn.execute(text("INSERT INTO api_keys (user_id, key, name) VALUES (1, 'k-1', 'Key')"))
            conn.execute(text("INSERT INTO api_key_usage (api_key_id, endpoint) VALUES (1, '/x')"))

            row = conn.execute(text("SELECT is_active, usage_count, created_at FROM api_keys")).one()
            assert bool(row[0]) is True
            assert row[1] == 0
            assert row[2] is not None

            conn.execute(text("DELETE FROM api_keys WHERE id = 1"))
            assert conn.execute(text("SELECT COUNT(*) FROM api_key_usage")).scalar() == 0

    def test_key_is_unique(self, migration, engine):
        from sqlalchemy.exc import IntegrityError

        run(engine, migration.upgrade)

        with pytest.raises(IntegrityError):
            with engine.begin() as conn:
                conn.execute(text(
                    "INSERT INTO users (username, email, password_hash) VALUES ('u', 'u@example.com', 'x')"
                ))
                conn.execute(text("INSERT INTO api_keys (user_id, key, name) VALUES (1, 'dup', 'A')"))
                conn.execute(text("INSERT INTO api_keys (user_id, key, name) VALUES (1, 'dup', 'B')"))

    def test_downgrade_drops_tables(self, migration, engine):
        run(engine, migration.upgrade)
        run(engine, migration.downgrade)

        assert inspect(engine).get_table_names() == []
