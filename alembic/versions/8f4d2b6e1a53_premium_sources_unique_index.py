"""Add premium_sources with its (user, type, source) uniqueness index

Revision ID: 8f4d2b6e1a53
Revises: 3c1e7a9d4b20
Create Date: 2026-10-17 12:30:00.000000

An existing premium_sources table without the index is rebuilt: rows are
copied into the new shape (NULL source ids become '', duplicates collapse
onto the newest grant) before the old table is dropped.
"""
from alembic import op

from veebee.database.migrations import SOURCES_UNIQUE_INDEX, ensure_premium_sources_schema

# revision identifiers, used by Alembic.
revision = "8f4d2b6e1a53"
down_revision = "3c1e7a9d4b20"
branch_labels = None
depends_on = None


def upgrade() -> None:
    ensure_premium_sources_schema(op.get_bind())


def downgrade() -> None:
    op.drop_index(SOURCES_UNIQUE_INDEX, table_name="premium_sources")
    op.drop_table("premium_sources")
