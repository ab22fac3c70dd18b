"""
veebee.services.premium_service — Premium Grant / Revoke Store Layer
=====================================================================

Every mutation of premium state goes through this module.  Each write
follows the same unit of work:

  1. Open a session, apply the change to ``premium_users`` /
     ``premium_servers`` / ``premium_roles`` (and the matching
     ``premium_sources`` row), commit.
  2. In a *separate* session, append one ``premium_audit_log`` entry.

A failed state write propagates to the caller.  A failed audit write is
logged and reported as ``WriteOutcome(audited=False)``; it never undoes the
grant it describes.

Functions here are synchronous.  Cogs, the premium manager and the API call
them through :func:`veebee.database.engine.run_db`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Engine, and_, case, delete, func, or_, select
from sqlalchemy.orm import Session

from veebee.constants import SECONDS_PER_DAY, SYSTEM_ACTOR, PremiumAction
from veebee.database.engine import get_session
from veebee.database.models import (
    PremiumKind,
    PremiumRole,
    PremiumServer,
    PremiumSourceRow,
    PremiumSubscription,
    PremiumUser,
    SourceType,
)
from veebee.engine.entitlement import (
    PremiumSource,
    compute_extension,
    has_lapsed,
    is_active,
    sort_sources,
    utc,
    utcnow,
)
from veebee.services.audit_service import log_premium_action

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class PremiumError(Exception):
    """Base class for premium failures with a user-facing message."""


class NotPremiumError(PremiumError):
    """Raised when an operation needs an existing grant and there is none."""


class RoleNotFoundError(PremiumError):
    """Raised when a role to register does not exist in the guild."""


class RolePermissionError(PremiumError):
    """Raised when the bot cannot manage the target role."""


class PremiumManagerNotReadyError(PremiumError):
    """Raised when a Discord-backed operation runs before the client is up."""


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class WriteOutcome:
    """Result of one state write plus its audit entry.

    ``result`` is whatever the state write returned.  ``audited`` is ``False``
    when the state committed but the audit entry could not be written.
    """

    result: Any = None
    audited: bool = True
    audit_id: int | None = None


def _audited_write(
    engine: Engine,
    mutate: Callable[[Session], Any],
    *,
    action: PremiumAction,
    performed_by: str | int,
    details: str,
    user_id: int | None = None,
    guild_id: int | None = None,
    role_id: int | None = None,
    now: datetime | None = None,
) -> WriteOutcome:
    """State write (propagates) -> commit -> audit write (best effort)."""
    with get_session(engine) as session:
        result = mutate(session)

    return WriteOutcome(
        result=result,
        **_try_audit(
            engine, action, performed_by, details,
            user_id=user_id, guild_id=guild_id, role_id=role_id, now=now,
        ),
    )


def _try_audit(
    engine: Engine,
    action: PremiumAction,
    performed_by: str | int,
    details: str,
    **kwargs: Any,
) -> dict:
    try:
        audit_id = log_premium_action(engine, action, performed_by, details, **kwargs)
    except Exception:
        logger.exception("Failed to write %s audit entry", action)
        return {"audited": False, "audit_id": None}
    return {"audited": True, "audit_id": audit_id}


def _upsert_source(
    session: Session,
    *,
    user_id: int,
    source_type: SourceType,
    source_id: str = "",
    granted_by: str,
    granted_at: datetime,
    expires_at: datetime | None,
    is_permanent: bool,
) -> None:
    row = session.scalars(
        select(PremiumSourceRow).where(
            PremiumSourceRow.user_id == user_id,
            PremiumSourceRow.source_type == source_type,
            PremiumSourceRow.source_id == source_id,
        )
    ).first()
    if row is None:
        row = PremiumSourceRow(user_id=user_id, source_type=source_type, source_id=source_id)
        session.add(row)
    row.granted_by = granted_by
    row.granted_at = granted_at
    row.expires_at = expires_at
    row.is_permanent = is_permanent


def _delete_manual_source(session: Session, user_id: int) -> None:
    session.execute(
        delete(PremiumSourceRow).where(
            PremiumSourceRow.user_id == user_id,
            PremiumSourceRow.source_type == SourceType.MANUAL,
        )
    )


def _days(duration_days: int) -> timedelta:
    return timedelta(days=duration_days)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
def add_premium_user(
    engine: Engine,
    user_id: int,
    duration_days: int,
    granted_by: str | int,
    *,
    now: datetime | None = None,
) -> WriteOutcome:
    """Grant (or fully replace) a manual grant of *duration_days*.

    The previous row, if any, is overwritten: counters restart at one
    extension and the duration of this grant only.
    """
    if duration_days <= 0:
        raise ValueError("duration_days must be positive")
    now = now or utcnow()
    expires_at = now + _days(duration_days)
    actor = str(granted_by)

    def mutate(session: Session) -> datetime:
        row = session.get(PremiumUser, user_id)
        if row is None:
            row = PremiumUser(user_id=user_id)
            session.add(row)
        row.expires_at = expires_at
        row.started_at = now
        row.granted_by = actor
        row.is_permanent = False
        row.total_time_seconds = duration_days * SECONDS_PER_DAY
        row.times_extended = 1
        row.last_extended_at = None
        row.last_extended_by = None
        _upsert_source(
            session, user_id=user_id, source_type=SourceType.MANUAL,
            granted_by=actor, granted_at=now, expires_at=expires_at, is_permanent=False,
        )
        return expires_at

    outcome = _audited_write(
        engine, mutate,
        action=PremiumAction.ADD_USER,
        performed_by=actor,
        details=f"Added premium user {user_id} for {duration_days} days",
        user_id=user_id,
        now=now,
    )
    logger.info("Premium granted to user %s for %d days by %s", user_id, duration_days, actor)
    return outcome


def remove_premium_user(
    engine: Engine,
    user_id: int,
    removed_by: str | int,
    *,
    now: datetime | None = None,
) -> WriteOutcome:
    """Delete the manual grant.  Removing a missing grant is not an error.

    ``result`` is ``True`` when a row was actually deleted.
    """
    def mutate(session: Session) -> bool:
        deleted = session.execute(
            delete(PremiumUser).where(PremiumUser.user_id == user_id)
        ).rowcount
        _delete_manual_source(session, user_id)
        return bool(deleted)

    return _audited_write(
        engine, mutate,
        action=PremiumAction.REMOVE_USER,
        performed_by=removed_by,
        details=f"Removed premium from user {user_id}",
        user_id=user_id,
        now=now,
    )


def is_premium_user(engine: Engine, user_id: int, *, now: datetime | None = None) -> bool:
    """Whether *user_id* holds an active manual grant.

    Each call that finds a lapsed grant appends a ``PREMIUM_EXPIRED`` entry,
    so repeated checks after expiry produce repeated entries.
    """
    now = now or utcnow()
    with get_session(engine) as session:
        row = session.get(PremiumUser, user_id)
        if row is None:
            return False
        expires_at, permanent = row.expires_at, row.is_permanent

    if is_active(expires_at, permanent, now):
        return True
    if has_lapsed(expires_at, permanent, now):
        _try_audit(
            engine, PremiumAction.PREMIUM_EXPIRED, SYSTEM_ACTOR,
            f"Premium expired for user {user_id}", user_id=user_id, now=now,
        )
    return False


# ---------------------------------------------------------------------------
# Servers
# ---------------------------------------------------------------------------
def add_premium_server(
    engine: Engine,
    guild_id: int,
    added_by: str | int,
    duration_days: int | None = None,
    *,
    now: datetime | None = None,
) -> WriteOutcome:
    """Grant server-wide premium; permanent when *duration_days* is ``None``."""
    if duration_days is not None and duration_days <= 0:
        raise ValueError("duration_days must be positive")
    now = now or utcnow()
    permanent = duration_days is None
    expires_at = None if permanent else now + _days(duration_days)
    actor = str(added_by)

    def mutate(session: Session) -> datetime | None:
        row = session.get(PremiumServer, guild_id)
        if row is None:
            row = PremiumServer(guild_id=guild_id)
            session.add(row)
        row.added_by = actor
        row.added_at = now
        row.expires_at = expires_at
        row.is_permanent = permanent
        row.total_time_seconds = 0 if permanent else duration_days * SECONDS_PER_DAY
        row.times_extended = 1
        row.last_extended_at = None
        row.last_extended_by = None
        return expires_at

    span = "permanently" if permanent else f"for {duration_days} days"
    outcome = _audited_write(
        engine, mutate,
        action=PremiumAction.ADD_SERVER,
        performed_by=actor,
        details=f"Added premium to server {guild_id} {span}",
        guild_id=guild_id,
        now=now,
    )
    logger.info("Premium granted to server %s %s by %s", guild_id, span, actor)
    return outcome


def remove_premium_server(
    engine: Engine,
    guild_id: int,
    removed_by: str | int,
    *,
    now: datetime | None = None,
) -> WriteOutcome:
    def mutate(session: Session) -> bool:
        return bool(session.execute(
            delete(PremiumServer).where(PremiumServer.guild_id == guild_id)
        ).rowcount)

    return _audited_write(
        engine, mutate,
        action=PremiumAction.REMOVE_SERVER,
        performed_by=removed_by,
        details=f"Removed premium from server {guild_id}",
        guild_id=guild_id,
        now=now,
    )


def is_premium_server(engine: Engine, guild_id: int, *, now: datetime | None = None) -> bool:
    """Server counterpart of :func:`is_premium_user` (same expiry auditing)."""
    now = now or utcnow()
    with get_session(engine) as session:
        row = session.get(PremiumServer, guild_id)
        if row is None:
            return False
        expires_at, permanent = row.expires_at, row.is_permanent

    if is_active(expires_at, permanent, now):
        return True
    if has_lapsed(expires_at, permanent, now):
        _try_audit(
            engine, PremiumAction.PREMIUM_EXPIRED, SYSTEM_ACTOR,
            f"Premium expired for server {guild_id}", guild_id=guild_id, now=now,
        )
    return False


# ---------------------------------------------------------------------------
# Extend / make permanent (users and servers)
# ---------------------------------------------------------------------------
_TARGETS: dict[str, tuple[type, str]] = {
    PremiumKind.USER: (PremiumUser, "user"),
    PremiumKind.SERVER: (PremiumServer, "server"),
}


def _target(kind: str) -> tuple[type, str]:
    try:
        return _TARGETS[PremiumKind(kind)]
    except ValueError:
        raise ValueError(f"Unknown premium kind: {kind!r}") from None


def _target_ids(kind: str, target_id: int) -> dict:
    return {"user_id": target_id} if kind == PremiumKind.USER else {"guild_id": target_id}


def extend_premium(
    engine: Engine,
    kind: str,
    target_id: int,
    duration_days: int,
    extended_by: str | int,
    *,
    now: datetime | None = None,
) -> WriteOutcome:
    """Add *duration_days* to an existing user or server grant.

    The new expiry counts forward from the later of the current expiry and
    now.  Permanent grants keep no expiry; their counters still move.

    Raises
    ------
    NotPremiumError
        If no grant row exists.  Nothing is written.
    """
    model, label = _target(kind)
    now = now or utcnow()
    actor = str(extended_by)

    def mutate(session: Session) -> datetime | None:
        row = session.get(model, target_id)
        if row is None:
            raise NotPremiumError(f"{label.capitalize()} is not premium")
        ext = compute_extension(
            current_expiry=row.expires_at,
            is_permanent=row.is_permanent,
            total_time_seconds=row.total_time_seconds,
            times_extended=row.times_extended,
            duration_days=duration_days,
            now=now,
        )
        row.expires_at = ext.expires_at
        row.total_time_seconds = ext.total_time_seconds
        row.times_extended = ext.times_extended
        row.last_extended_at = now
        row.last_extended_by = actor
        if model is PremiumUser:
            _upsert_source(
                session, user_id=target_id, source_type=SourceType.MANUAL,
                granted_by=row.granted_by, granted_at=utc(row.started_at) or now,
                expires_at=ext.expires_at, is_permanent=row.is_permanent,
            )
        return ext.expires_at

    action = PremiumAction.EXTEND_USER if model is PremiumUser else PremiumAction.EXTEND_SERVER
    return _audited_write(
        engine, mutate,
        action=action,
        performed_by=actor,
        details=f"Extended premium for {label} {target_id} by {duration_days} days",
        now=now,
        **_target_ids(kind, target_id),
    )


def make_permanent_premium(
    engine: Engine,
    kind: str,
    target_id: int,
    set_by: str | int,
    *,
    now: datetime | None = None,
) -> WriteOutcome:
    """Mark a user or server grant permanent.

    A missing target is a no-op update (``result`` is ``False``); the audit
    entry is written either way.
    """
    model, label = _target(kind)

    def mutate(session: Session) -> bool:
        row = session.get(model, target_id)
        if row is None:
            return False
        row.is_permanent = True
        row.expires_at = None
        if model is PremiumUser:
            _upsert_source(
                session, user_id=target_id, source_type=SourceType.MANUAL,
                granted_by=row.granted_by, granted_at=utc(row.started_at) or utcnow(),
                expires_at=None, is_permanent=True,
            )
        return True

    action = (
        PremiumAction.MAKE_PERMANENT_USER if model is PremiumUser
        else PremiumAction.MAKE_PERMANENT_SERVER
    )
    return _audited_write(
        engine, mutate,
        action=action,
        performed_by=set_by,
        details=f"Made {label} {target_id} permanently premium",
        now=now,
        **_target_ids(kind, target_id),
    )


# ---------------------------------------------------------------------------
# Role registrations
# ---------------------------------------------------------------------------
def upsert_premium_role(
    engine: Engine,
    guild_id: int,
    role_id: int,
    added_by: str | int,
    *,
    auto_sync: bool = True,
    now: datetime | None = None,
) -> WriteOutcome:
    """Register (or re-register) a guild role as premium-granting.

    Callers check that the bot can manage the role first; see
    :meth:`PremiumManager.add_premium_role`.
    """
    now = now or utcnow()
    actor = str(added_by)

    def mutate(session: Session) -> None:
        row = session.get(PremiumRole, (guild_id, role_id))
        if row is None:
            row = PremiumRole(guild_id=guild_id, role_id=role_id)
            session.add(row)
        row.auto_sync = auto_sync
        row.added_by = actor
        row.added_at = now

    return _audited_write(
        engine, mutate,
        action=PremiumAction.ADD_ROLE,
        performed_by=actor,
        details=f"Added premium role {role_id} to guild {guild_id}",
        guild_id=guild_id, role_id=role_id, now=now,
    )


def delete_premium_role(
    engine: Engine,
    guild_id: int,
    role_id: int,
    removed_by: str | int,
    *,
    details: str | None = None,
    now: datetime | None = None,
) -> WriteOutcome:
    def mutate(session: Session) -> bool:
        return bool(session.execute(
            delete(PremiumRole).where(
                PremiumRole.guild_id == guild_id,
                PremiumRole.role_id == role_id,
            )
        ).rowcount)

    return _audited_write(
        engine, mutate,
        action=PremiumAction.REMOVE_ROLE,
        performed_by=removed_by,
        details=details or f"Removed premium role {role_id} from guild {guild_id}",
        guild_id=guild_id, role_id=role_id, now=now,
    )


@dataclass(frozen=True, slots=True)
class RoleRegistration:
    guild_id: int
    role_id: int
    auto_sync: bool
    added_by: str
    added_at: datetime


def get_premium_roles(engine: Engine, guild_id: int | None = None) -> list[RoleRegistration]:
    """Registered premium roles, for one guild or all guilds."""
    stmt = select(PremiumRole).order_by(PremiumRole.guild_id, PremiumRole.added_at)
    if guild_id is not None:
        stmt = stmt.where(PremiumRole.guild_id == guild_id)
    with get_session(engine) as session:
        return [
            RoleRegistration(r.guild_id, r.role_id, r.auto_sync, r.added_by, utc(r.added_at))
            for r in session.scalars(stmt)
        ]


def get_premium_role_ids(engine: Engine, guild_id: int) -> set[int]:
    with get_session(engine) as session:
        return set(session.scalars(
            select(PremiumRole.role_id).where(PremiumRole.guild_id == guild_id)
        ))


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PremiumInfo:
    """Detached view of a user or server grant, timestamps in UTC."""

    kind: str
    target_id: int
    active: bool
    is_permanent: bool
    expires_at: datetime | None
    granted_at: datetime
    granted_by: str
    total_time_seconds: int
    times_extended: int
    last_extended_at: datetime | None
    last_extended_by: str | None

    @property
    def total_days(self) -> float:
        return self.total_time_seconds / SECONDS_PER_DAY


def _user_info(row: PremiumUser, now: datetime) -> PremiumInfo:
    return PremiumInfo(
        kind=PremiumKind.USER,
        target_id=row.user_id,
        active=is_active(row.expires_at, row.is_permanent, now),
        is_permanent=row.is_permanent,
        expires_at=utc(row.expires_at),
        granted_at=utc(row.started_at),
        granted_by=row.granted_by,
        total_time_seconds=row.total_time_seconds or 0,
        times_extended=row.times_extended or 0,
        last_extended_at=utc(row.last_extended_at),
        last_extended_by=row.last_extended_by,
    )


def _server_info(row: PremiumServer, now: datetime) -> PremiumInfo:
    return PremiumInfo(
        kind=PremiumKind.SERVER,
        target_id=row.guild_id,
        active=is_active(row.expires_at, row.is_permanent, now),
        is_permanent=row.is_permanent,
        expires_at=utc(row.expires_at),
        granted_at=utc(row.added_at),
        granted_by=row.added_by,
        total_time_seconds=row.total_time_seconds or 0,
        times_extended=row.times_extended or 0,
        last_extended_at=utc(row.last_extended_at),
        last_extended_by=row.last_extended_by,
    )


def get_user_premium_info(
    engine: Engine, user_id: int, *, now: datetime | None = None,
) -> PremiumInfo | None:
    """Read-only lookup; unlike :func:`is_premium_user` it never audits."""
    with get_session(engine) as session:
        row = session.get(PremiumUser, user_id)
        return _user_info(row, now or utcnow()) if row else None


def get_server_premium_info(
    engine: Engine, guild_id: int, *, now: datetime | None = None,
) -> PremiumInfo | None:
    with get_session(engine) as session:
        row = session.get(PremiumServer, guild_id)
        return _server_info(row, now or utcnow()) if row else None


def _active_clause(model, now: datetime):
    return or_(model.is_permanent.is_(True), model.expires_at > now)


def list_premium_users(
    engine: Engine, *, active_only: bool = True, now: datetime | None = None,
) -> list[PremiumInfo]:
    now = now or utcnow()
    stmt = select(PremiumUser).order_by(PremiumUser.started_at.desc())
    if active_only:
        stmt = stmt.where(_active_clause(PremiumUser, now))
    with get_session(engine) as session:
        return [_user_info(r, now) for r in session.scalars(stmt)]


def list_premium_servers(
    engine: Engine, *, active_only: bool = True, now: datetime | None = None,
) -> list[PremiumInfo]:
    now = now or utcnow()
    stmt = select(PremiumServer).order_by(PremiumServer.added_at.desc())
    if active_only:
        stmt = stmt.where(_active_clause(PremiumServer, now))
    with get_session(engine) as session:
        return [_server_info(r, now) for r in session.scalars(stmt)]


def list_premium_sources(engine: Engine, user_id: int) -> list[PremiumSource]:
    """Persisted sources for *user_id*, primary source first."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(PremiumSourceRow).where(PremiumSourceRow.user_id == user_id)
        ).all()
        return sort_sources(
            PremiumSource(
                source_type=r.source_type,
                source_id=r.source_id or None,
                granted_by=r.granted_by,
                granted_at=utc(r.granted_at),
                expires_at=utc(r.expires_at),
                is_permanent=r.is_permanent,
            )
            for r in rows
        )


@dataclass(frozen=True, slots=True)
class PremiumStats:
    users_total: int
    users_active: int
    users_permanent: int
    users_avg_days: float
    servers_total: int
    servers_active: int
    servers_permanent: int
    servers_avg_days: float
    roles_total: int
    roles_auto_sync: int


def _grant_stats(session: Session, model, now: datetime) -> tuple[int, int, int, float]:
    row = session.execute(
        select(
            func.count(),
            func.coalesce(func.sum(case((_active_clause(model, now), 1), else_=0)), 0),
            func.coalesce(func.sum(case((model.is_permanent.is_(True), 1), else_=0)), 0),
            func.coalesce(func.avg(model.total_time_seconds), 0),
        ).select_from(model)
    ).one()
    total, active, permanent, avg_seconds = row
    return int(total), int(active), int(permanent), float(avg_seconds) / SECONDS_PER_DAY


def get_premium_stats(engine: Engine, *, now: datetime | None = None) -> PremiumStats:
    """Counts and average granted duration across the three grant tables."""
    now = now or utcnow()
    with get_session(engine) as session:
        u_total, u_active, u_perm, u_avg = _grant_stats(session, PremiumUser, now)
        s_total, s_active, s_perm, s_avg = _grant_stats(session, PremiumServer, now)
        r_total, r_auto = session.execute(
            select(
                func.count(),
                func.coalesce(func.sum(case((PremiumRole.auto_sync.is_(True), 1), else_=0)), 0),
            ).select_from(PremiumRole)
        ).one()
    return PremiumStats(
        users_total=u_total, users_active=u_active, users_permanent=u_perm,
        users_avg_days=u_avg,
        servers_total=s_total, servers_active=s_active, servers_permanent=s_perm,
        servers_avg_days=s_avg,
        roles_total=int(r_total), roles_auto_sync=int(r_auto),
    )


# ---------------------------------------------------------------------------
# Reconciliation helpers
# ---------------------------------------------------------------------------
def get_active_manual_user_ids(engine: Engine, *, now: datetime | None = None) -> set[int]:
    """Ids of users with an unexpired (or permanent) manual grant."""
    now = now or utcnow()
    with get_session(engine) as session:
        return set(session.scalars(
            select(PremiumUser.user_id).where(_active_clause(PremiumUser, now))
        ))


def revoke_manual_premium(
    engine: Engine,
    user_id: int,
    *,
    now: datetime | None = None,
) -> WriteOutcome:
    """Delete a manual grant superseded by role-based premium.

    Audited as ``REVOKE_MANUAL_PREMIUM`` by ``SYSTEM`` only when a row was
    actually removed.
    """
    with get_session(engine) as session:
        deleted = bool(session.execute(
            delete(PremiumUser).where(PremiumUser.user_id == user_id)
        ).rowcount)
        _delete_manual_source(session, user_id)

    if not deleted:
        return WriteOutcome(result=False, audited=False)

    logger.info("Revoked manual premium from user %s (has role-based premium)", user_id)
    return WriteOutcome(
        result=True,
        **_try_audit(
            engine, PremiumAction.REVOKE_MANUAL_PREMIUM, SYSTEM_ACTOR,
            f"Revoked manual premium from user {user_id} (has role-based premium)",
            user_id=user_id, now=now,
        ),
    )


def replace_role_sources(
    engine: Engine,
    holders: dict[int, set[int]],
    *,
    now: datetime | None = None,
) -> int:
    """Make the role-type rows of ``premium_sources`` equal *holders*.

    *holders* maps role id to the user ids currently holding it.  Rows for
    roles or users no longer present are deleted; new pairs are inserted.
    Returns the number of role source rows after the refresh.
    """
    now = now or utcnow()
    wanted = {(uid, str(rid)) for rid, uids in holders.items() for uid in uids}

    with get_session(engine) as session:
        existing = {
            (row.user_id, row.source_id): row
            for row in session.scalars(
                select(PremiumSourceRow).where(PremiumSourceRow.source_type == SourceType.ROLE)
            )
        }
        for key, row in existing.items():
            if key not in wanted:
                session.delete(row)
        session.flush()
        for user_id, source_id in wanted - existing.keys():
            session.add(PremiumSourceRow(
                user_id=user_id,
                source_type=SourceType.ROLE,
                source_id=source_id,
                granted_by=SYSTEM_ACTOR,
                granted_at=now,
                expires_at=None,
                is_permanent=True,
            ))
    return len(wanted)


# ---------------------------------------------------------------------------
# Subscriptions (HTTP API)
# ---------------------------------------------------------------------------
def record_subscription(
    engine: Engine,
    *,
    payment_id: str,
    user_id: int,
    duration_days: int,
    amount: float = 0.0,
    currency: str = "USD",
    now: datetime | None = None,
) -> bool:
    """Store a paid subscription.  Returns ``False`` for a replayed payment id."""
    now = now or utcnow()
    with get_session(engine) as session:
        if session.get(PremiumSubscription, payment_id) is not None:
            return False
        session.add(PremiumSubscription(
            payment_id=payment_id,
            user_id=user_id,
            started_at=now,
            expires_at=now + _days(duration_days),
            amount=amount,
            currency=currency,
        ))
    return True


def close_subscriptions(engine: Engine, user_id: int, *, now: datetime | None = None) -> int:
    """End every still-running subscription of *user_id* at *now*."""
    now = now or utcnow()
    with get_session(engine) as session:
        rows = session.scalars(
            select(PremiumSubscription).where(
                and_(PremiumSubscription.user_id == user_id,
                     PremiumSubscription.expires_at > now)
            )
        ).all()
        for row in rows:
            row.expires_at = now
        return len(rows)
