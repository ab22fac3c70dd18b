"""
veebee.database.migrations — Non-destructive Runtime Migrations
================================================================

Two schema repairs that run on every startup (via :func:`init_db`) and from
the Alembic revisions:

- :func:`migrate_legacy_premium_tables` — rebuilds the first-generation
  premium tables (no permanence flag, no extension counters) into the
  current shape.
- :func:`ensure_premium_sources_schema` — adds the
  ``(user_id, source_type, source_id)`` uniqueness index to a
  ``premium_sources`` table that was created before it existed.

Both work on a :class:`~sqlalchemy.Connection` so Alembic can hand them
``op.get_bind()``.  Rebuilds always follow the same order: create the new
shape under a temporary name, copy every row across, drop the old table,
rename the new one into place.  Nothing is dropped before its rows exist
somewhere else.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from sqlalchemy import Connection, MetaData, Table, inspect, select, text

from veebee.constants import MIGRATION_ACTOR
from veebee.database.models import PremiumRole, PremiumServer, PremiumSourceRow, PremiumUser

logger = logging.getLogger(__name__)

SOURCES_UNIQUE_INDEX = "uq_premium_sources_user_type_source"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _coerce_datetime(value) -> datetime | None:
    """Normalise legacy timestamp values (epoch ms, ISO text, naive) to UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, UTC)
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _column_names(conn: Connection, table_name: str) -> set[str]:
    return {col["name"] for col in inspect(conn).get_columns(table_name)}


def _rebuild_table(
    conn: Connection,
    model_table: Table,
    transform: Callable[[Iterable[dict]], list[dict]],
) -> int:
    """Rebuild *model_table*'s physical table into the model's shape.

    Returns the number of rows copied.
    """
    name = model_table.name
    tmp_name = f"{name}_new"

    old = Table(name, MetaData(), autoload_with=conn)
    new = model_table.to_metadata(MetaData(), name=tmp_name)
    new.drop(conn, checkfirst=True)  # leftover from an interrupted run
    new.create(conn)

    old_rows = [dict(row._mapping) for row in conn.execute(select(old))]
    new_rows = transform(old_rows)
    if new_rows:
        conn.execute(new.insert(), new_rows)

    old.drop(conn)
    conn.execute(text(f"ALTER TABLE {tmp_name} RENAME TO {name}"))
    return len(new_rows)


# ---------------------------------------------------------------------------
# premium_sources uniqueness
# ---------------------------------------------------------------------------
def has_sources_unique_index(conn: Connection) -> bool:
    """True if ``premium_sources`` already carries the uniqueness index."""
    insp = inspect(conn)
    for idx in insp.get_indexes("premium_sources"):
        if idx["name"] == SOURCES_UNIQUE_INDEX and idx.get("unique"):
            return True
    return any(
        uc["name"] == SOURCES_UNIQUE_INDEX
        for uc in insp.get_unique_constraints("premium_sources")
    )


def _dedupe_sources(rows: Iterable[dict]) -> list[dict]:
    """Collapse rows onto one per (user, type, source id); newest grant wins."""
    now = datetime.now(UTC)
    newest: dict[tuple, dict] = {}
    for row in rows:
        source_id = row.get("source_id")
        key = (int(row["user_id"]), row["source_type"], "" if source_id is None else str(source_id))
        granted_at = _coerce_datetime(row.get("granted_at")) or now
        current = newest.get(key)
        if current is not None and current["granted_at"] >= granted_at:
            continue
        newest[key] = {
            "user_id": key[0],
            "source_type": key[1],
            "source_id": key[2],
            "granted_by": str(row.get("granted_by") or MIGRATION_ACTOR),
            "granted_at": granted_at,
            "expires_at": _coerce_datetime(row.get("expires_at")),
            "is_permanent": bool(row.get("is_permanent")),
        }
    return list(newest.values())


def ensure_premium_sources_schema(conn: Connection) -> bool:
    """Create or repair ``premium_sources``.

    Returns ``True`` only when an existing table had to be rebuilt.  A second
    call after a rebuild finds the index and does nothing.
    """
    table = PremiumSourceRow.__table__
    if not inspect(conn).has_table(table.name):
        table.create(conn)
        logger.info("Created premium_sources table.")
        return False

    if has_sources_unique_index(conn):
        return False

    logger.info("Migrating premium_sources table to fixed schema...")
    copied = _rebuild_table(conn, table, _dedupe_sources)
    logger.info("premium_sources table migrated successfully (%d rows kept).", copied)
    return True


# ---------------------------------------------------------------------------
# First-generation premium tables
# ---------------------------------------------------------------------------
def _legacy_users(rows: Iterable[dict]) -> list[dict]:
    now = datetime.now(UTC)
    out = []
    for row in rows:
        expires_at = _coerce_datetime(row.get("expires_at"))
        remaining = int((expires_at - now).total_seconds()) if expires_at else 0
        out.append({
            "user_id": int(row["user_id"]),
            "expires_at": expires_at,
            "started_at": now,  # the old table never recorded a start time
            "granted_by": MIGRATION_ACTOR,
            "is_permanent": expires_at is None,
            "total_time_seconds": max(remaining, 0),
            "times_extended": 0,
        })
    return out


def _legacy_servers(rows: Iterable[dict]) -> list[dict]:
    now = datetime.now(UTC)
    out = []
    for row in rows:
        added_at = _coerce_datetime(row.get("added_at")) or now
        out.append({
            "guild_id": int(row["guild_id"]),
            "added_by": str(row.get("added_by") or MIGRATION_ACTOR),
            "added_at": added_at,
            "expires_at": None,
            "is_permanent": False,
            "total_time_seconds": max(int((now - added_at).total_seconds()), 0),
            "times_extended": 0,
        })
    return out


def _legacy_roles(rows: Iterable[dict]) -> list[dict]:
    now = datetime.now(UTC)
    return [
        {
            "guild_id": int(row["guild_id"]),
            "role_id": int(row["role_id"]),
            "auto_sync": True,
            "added_by": MIGRATION_ACTOR,
            "added_at": now,
        }
        for row in rows
    ]


_LEGACY_TABLES: tuple[tuple[Table, str, Callable[[Iterable[dict]], list[dict]]], ...] = (
    (PremiumUser.__table__, "is_permanent", _legacy_users),
    (PremiumServer.__table__, "is_permanent", _legacy_servers),
    (PremiumRole.__table__, "auto_sync", _legacy_roles),
)


def migrate_legacy_premium_tables(conn: Connection) -> list[str]:
    """Rebuild any premium table still in its first-generation layout.

    A table counts as legacy when it exists but lacks its marker column.
    Returns the names of the tables that were rebuilt.
    """
    insp = inspect(conn)
    rebuilt: list[str] = []
    for table, marker, transform in _LEGACY_TABLES:
        if not insp.has_table(table.name):
            continue
        if marker in _column_names(conn, table.name):
            continue
        copied = _rebuild_table(conn, table, transform)
        rebuilt.append(table.name)
        logger.info("Migrated legacy %s table (%d rows).", table.name, copied)
    return rebuilt
