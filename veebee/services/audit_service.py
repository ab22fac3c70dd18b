"""
veebee.services.audit_service — Premium Audit Log
==================================================

Append-only history of every entitlement change.  Writes happen in their own
session so a failed audit insert can never undo the state change it
describes; readers filter by action-tag prefix and a trailing day window.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import Engine, select

from veebee.database.engine import get_session
from veebee.database.models import PremiumAuditLog
from veebee.engine.entitlement import utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """Detached, read-only view of one audit row."""

    id: int
    timestamp: datetime
    action_type: str
    user_id: int | None
    guild_id: int | None
    role_id: int | None
    performed_by: str
    details: str | None


def log_premium_action(
    engine: Engine,
    action_type: str,
    performed_by: str | int,
    details: str | None = None,
    *,
    user_id: int | None = None,
    guild_id: int | None = None,
    role_id: int | None = None,
    now: datetime | None = None,
) -> int:
    """Append one entry and return its id.

    Failures propagate; callers that treat the audit as best-effort catch
    them (see ``premium_service._audited_write``).
    """
    entry = PremiumAuditLog(
        timestamp=now or utcnow(),
        action_type=str(action_type),
        user_id=user_id,
        guild_id=guild_id,
        role_id=role_id,
        performed_by=str(performed_by),
        details=details,
    )
    with get_session(engine) as session:
        session.add(entry)
        session.flush()
        entry_id = entry.id
    logger.debug("Audit %s by %s (user=%s guild=%s role=%s)",
                 action_type, performed_by, user_id, guild_id, role_id)
    return entry_id


def get_premium_audit_log(
    engine: Engine,
    days: int = 7,
    action_type: str = "all",
    *,
    limit: int | None = None,
    now: datetime | None = None,
) -> list[AuditEntry]:
    """Return entries from the last *days* days, newest first.

    *action_type* ``"all"`` disables the tag filter; anything else matches
    as a prefix, so ``"ADD"`` returns ``ADD_USER``, ``ADD_SERVER`` and
    ``ADD_ROLE``.
    """
    since = (now or utcnow()) - timedelta(days=days)
    stmt = (
        select(PremiumAuditLog)
        .where(PremiumAuditLog.timestamp >= since)
        .order_by(PremiumAuditLog.timestamp.desc(), PremiumAuditLog.id.desc())
    )
    if action_type and action_type != "all":
        stmt = stmt.where(PremiumAuditLog.action_type.startswith(action_type, autoescape=True))
    if limit is not None:
        stmt = stmt.limit(limit)

    with get_session(engine) as session:
        rows = session.scalars(stmt).all()
        return [
            AuditEntry(
                id=row.id,
                timestamp=utc(row.timestamp),
                action_type=row.action_type,
                user_id=row.user_id,
                guild_id=row.guild_id,
                role_id=row.role_id,
                performed_by=row.performed_by,
                details=row.details,
            )
            for row in rows
        ]
