"""Create premium tables

Revision ID: 3c1e7a9d4b20
Revises:
Create Date: 2026-10-17 12:00:00.000000

Databases that still hold the first-generation premium tables (no
``is_permanent`` / ``auto_sync`` columns) are rebuilt in place first.
"""
from alembic import op
import sqlalchemy as sa

from veebee.database.migrations import migrate_legacy_premium_tables

# revision identifiers, used by Alembic.
revision = "3c1e7a9d4b20"
down_revision = None
branch_labels = None
depends_on = None


def _missing(name: str) -> bool:
    return not sa.inspect(op.get_bind()).has_table(name)


def upgrade() -> None:
    migrate_legacy_premium_tables(op.get_bind())

    if _missing("premium_users"):
        op.create_table(
            "premium_users",
            sa.Column("user_id", sa.BigInteger(), primary_key=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("granted_by", sa.String(64), nullable=False),
            sa.Column("is_permanent", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("total_time_seconds", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("times_extended", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_extended_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_extended_by", sa.String(64), nullable=True),
        )

    if _missing("premium_servers"):
        op.create_table(
            "premium_servers",
            sa.Column("guild_id", sa.BigInteger(), primary_key=True),
            sa.Column("added_by", sa.String(64), nullable=False),
            sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_permanent", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("total_time_seconds", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("times_extended", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_extended_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_extended_by", sa.String(64), nullable=True),
        )

    if _missing("premium_roles"):
        op.create_table(
            "premium_roles",
            sa.Column("guild_id", sa.BigInteger(), primary_key=True),
            sa.Column("role_id", sa.BigInteger(), primary_key=True),
            sa.Column("auto_sync", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("added_by", sa.String(64), nullable=False),
            sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        )

    if _missing("premium_audit_log"):
        op.create_table(
            "premium_audit_log",
            sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False,
                      server_default=sa.func.now()),
            sa.Column("action_type", sa.String(50), nullable=False),
            sa.Column("user_id", sa.BigInteger(), nullable=True),
            sa.Column("guild_id", sa.BigInteger(), nullable=True),
            sa.Column("role_id", sa.BigInteger(), nullable=True),
            sa.Column("performed_by", sa.String(64), nullable=False),
            sa.Column("details", sa.Text(), nullable=True),
        )
        op.create_index("ix_premium_audit_log_timestamp", "premium_audit_log", ["timestamp"])
        op.create_index(
            "ix_premium_audit_log_action_time", "premium_audit_log", ["action_type", "timestamp"],
        )

    if _missing("premium_subscriptions"):
        op.create_table(
            "premium_subscriptions",
            sa.Column("payment_id", sa.String(128), primary_key=True),
            sa.Column("user_id", sa.BigInteger(), nullable=False),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("currency", sa.String(8), nullable=False, server_default="USD"),
        )
        op.create_index("ix_premium_subscriptions_user", "premium_subscriptions", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_premium_subscriptions_user", table_name="premium_subscriptions")
    op.drop_table("premium_subscriptions")
    op.drop_index("ix_premium_audit_log_action_time", table_name="premium_audit_log")
    op.drop_index("ix_premium_audit_log_timestamp", table_name="premium_audit_log")
    op.drop_table("premium_audit_log")
    op.drop_table("premium_roles")
    op.drop_table("premium_servers")
    op.drop_table("premium_users")
