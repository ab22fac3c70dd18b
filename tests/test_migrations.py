"""
tests/test_migrations.py — Runtime schema repairs
==================================================
Legacy layouts are created with raw DDL on a bare SQLite engine, then the
migrations are run against them.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import inspect, text

from veebee.constants import MIGRATION_ACTOR
from veebee.database.migrations import (
    ensure_premium_sources_schema,
    has_sources_unique_index,
    migrate_legacy_premium_tables,
)
from veebee.services import premium_service as ps

OLD_SOURCES_DDL = """
CREATE TABLE premium_sources (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    source_type TEXT NOT NULL,
    source_id TEXT,
    granted_by TEXT,
    granted_at TEXT,
    expires_at TEXT,
    is_permanent INTEGER
)
"""


def _exec(engine, *statements, **params):
    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt), params)


# ===========================================================================
# premium_sources uniqueness
# ===========================================================================
class TestPremiumSourcesSchema:
    def test_missing_table_is_created(self, bare_engine):
        with bare_engine.begin() as conn:
            assert ensure_premium_sources_schema(conn) is False
            assert has_sources_unique_index(conn)

    def test_current_schema_is_left_alone(self, db_engine):
        with db_engine.begin() as conn:
            assert ensure_premium_sources_schema(conn) is False

    def test_rebuild_dedupes_and_is_idempotent(self, bare_engine):
        _exec(bare_engine, OLD_SOURCES_DDL)
        _exec(
            bare_engine,
            "INSERT INTO premium_sources (user_id, source_type, source_id, granted_by, granted_at, is_permanent) "
            "VALUES (1, 'role', '7', 'SYSTEM', '2024-01-01T00:00:00', 1)",
            "INSERT INTO premium_sources (user_id, source_type, source_id, granted_by, granted_at, is_permanent) "
            "VALUES (1, 'role', '7', 'SYSTEM', '2024-05-01T00:00:00', 1)",
            "INSERT INTO premium_sources (user_id, source_type, source_id, granted_by, granted_at, is_permanent) "
            "VALUES (1, 'manual', NULL, 'admin', '2024-02-01T00:00:00', 0)",
        )

        with bare_engine.begin() as conn:
            assert ensure_premium_sources_schema(conn) is True
        with bare_engine.begin() as conn:
            assert ensure_premium_sources_schema(conn) is False
            assert has_sources_unique_index(conn)
            assert not inspect(conn).has_table("premium_sources_new")

        sources = ps.list_premium_sources(bare_engine, 1)
        assert [(s.source_type, s.source_id) for s in sources] == [("role", "7"), ("manual", None)]
        assert sources[0].granted_at == datetime(2024, 5, 1, tzinfo=UTC)


# ===========================================================================
# First-generation tables
# ===========================================================================
class TestLegacyTables:
    def test_no_tables_means_nothing_to_do(self, bare_engine):
        with bare_engine.begin() as conn:
            assert migrate_legacy_premium_tables(conn) == []

    def test_current_tables_are_not_rebuilt(self, db_engine):
        with db_engine.begin() as conn:
            assert migrate_legacy_premium_tables(conn) == []

    def test_legacy_rows_are_carried_over(self, bare_engine):
        future_ms = int(datetime(2100, 1, 1, tzinfo=UTC).timestamp() * 1000)
        _exec(
            bare_engine,
            "CREATE TABLE premium_users (user_id INTEGER PRIMARY KEY, expires_at INTEGER)",
            "CREATE TABLE premium_servers (guild_id INTEGER PRIMARY KEY, added_by TEXT, added_at TEXT)",
            "CREATE TABLE premium_roles (guild_id INTEGER, role_id INTEGER, PRIMARY KEY (guild_id, role_id))",
            "INSERT INTO premium_users VALUES (1, :future)",
            "INSERT INTO premium_users VALUES (2, NULL)",
            "INSERT INTO premium_servers VALUES (50, '99', '2024-01-01T00:00:00')",
            "INSERT INTO premium_roles VALUES (50, 7)",
            future=future_ms,
        )

        with bare_engine.begin() as conn:
            rebuilt = migrate_legacy_premium_tables(conn)
        assert sorted(rebuilt) == ["premium_roles", "premium_servers", "premium_users"]

        timed = ps.get_user_premium_info(bare_engine, 1)
        assert timed.expires_at == datetime(2100, 1, 1, tzinfo=UTC)
        assert timed.granted_by == MIGRATION_ACTOR
        assert not timed.is_permanent

        forever = ps.get_user_premium_info(bare_engine, 2)
        assert forever.is_permanent and forever.active

        server = ps.get_server_premium_info(bare_engine, 50)
        assert server.granted_by == "99"
        assert not server.active  # neither expiry nor permanent: inert until extended

        roles = ps.get_premium_roles(bare_engine, 50)
        assert [(r.role_id, r.auto_sync) for r in roles] == [(7, True)]

        with bare_engine.begin() as conn:
            assert migrate_legacy_premium_tables(conn) == []
