"""
veebee.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- premium_users         — Manual per-user grants (Discord snowflake PK)
- premium_servers       — Server-wide grants (guild snowflake PK)
- premium_roles         — Guild roles whose members get premium in that guild
- premium_sources       — Per-user index of every active grant source
- premium_audit_log     — Append-only history of entitlement changes
- premium_subscriptions — Paid subscriptions recorded by the HTTP API

Expired grants are never swept: a row whose ``expires_at`` is in the past is
inert, and the resolver notices on read.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Veebee ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class SourceType(enum.StrEnum):
    """Why an entitlement holds.  Declaration order is NOT precedence."""
    MANUAL = "manual"
    ROLE = "role"
    SERVER = "server"


class PremiumKind(enum.StrEnum):
    """Target kind for extend / make-permanent operations."""
    USER = "user"
    SERVER = "server"


# ---------------------------------------------------------------------------
# PremiumUser — manual grant for one Discord user
# ---------------------------------------------------------------------------
class PremiumUser(Base):
    __tablename__ = "premium_users"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    granted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    is_permanent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_time_seconds: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    times_extended: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_extended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_extended_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PremiumUser user={self.user_id} expires={self.expires_at} "
            f"permanent={self.is_permanent}>"
        )


# ---------------------------------------------------------------------------
# PremiumServer — server-wide grant
# ---------------------------------------------------------------------------
class PremiumServer(Base):
    """Every member of the guild is premium while this row is active.

    Unlike users, a server may hold a row with neither an expiry nor the
    permanent flag; such a grant stays inert until extended.
    """
    __tablename__ = "premium_servers"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    added_by: Mapped[str] = mapped_column(String(64), nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_permanent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_time_seconds: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    times_extended: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_extended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_extended_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PremiumServer guild={self.guild_id} expires={self.expires_at} "
            f"permanent={self.is_permanent}>"
        )


# ---------------------------------------------------------------------------
# PremiumRole — "members of this role are premium in this guild"
# ---------------------------------------------------------------------------
class PremiumRole(Base):
    __tablename__ = "premium_roles"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    role_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    auto_sync: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    added_by: Mapped[str] = mapped_column(String(64), nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<PremiumRole guild={self.guild_id} role={self.role_id}>"


# ---------------------------------------------------------------------------
# PremiumSource — one row per (user, source type, source id)
# ---------------------------------------------------------------------------
class PremiumSourceRow(Base):
    """Denormalised index of why each user is premium.

    ``source_id`` is the role or guild snowflake as a string, or ``''`` for
    manual grants, so the unique index never has to reason about NULLs.
    """
    __tablename__ = "premium_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source_type: Mapped[str] = mapped_column(String(16), nullable=False)
    source_id: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    granted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_permanent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index(
            "uq_premium_sources_user_type_source",
            "user_id", "source_type", "source_id",
            unique=True,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<PremiumSourceRow user={self.user_id} type={self.source_type!r} "
            f"source={self.source_id!r}>"
        )


# ---------------------------------------------------------------------------
# PremiumAuditLog — append-only history
# ---------------------------------------------------------------------------
class PremiumAuditLog(Base):
    __tablename__ = "premium_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    guild_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    role_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    performed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_premium_audit_log_timestamp", "timestamp"),
        Index("ix_premium_audit_log_action_time", "action_type", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<PremiumAuditLog id={self.id} action={self.action_type} "
            f"by={self.performed_by}>"
        )


# ---------------------------------------------------------------------------
# PremiumSubscription — paid subscriptions from the HTTP API
# ---------------------------------------------------------------------------
class PremiumSubscription(Base):
    __tablename__ = "premium_subscriptions"

    payment_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="USD", nullable=False)

    __table_args__ = (
        Index("ix_premium_subscriptions_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<PremiumSubscription payment={self.payment_id!r} user={self.user_id}>"
