"""
veebee.services.premium_manager — Entitlement Resolver & Role Reconciliation
=============================================================================

The async half of the premium engine.  It combines the store
(:mod:`veebee.services.premium_service`) with live Discord state
(:class:`~veebee.services.discord_gateway.DiscordGateway`):

- :meth:`PremiumManager.has_premium_access` answers "may this member use a
  premium feature right now", checking sources in order: server grant,
  global premium role, registered guild role, manual grant.  Role-based
  access prunes a now-redundant manual grant as a side effect.
- :meth:`PremiumManager.sync_premium_roles` runs one reconciliation pass
  that converges the premium role in the global premium guild onto the set
  of entitled users.  Passes are idempotent; an interrupted pass is simply
  recomputed by the next one.

The manager owns no timer.  :class:`veebee.bot.cogs.tasks.PremiumTasks`
schedules it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import Engine

from veebee.config import VeebeeConfig
from veebee.constants import SYSTEM_ACTOR
from veebee.database.engine import run_db
from veebee.database.models import SourceType
from veebee.engine.entitlement import PremiumSource, batched, sort_sources, utcnow
from veebee.services.discord_gateway import DiscordGateway
from veebee.services.premium_service import (
    PremiumManagerNotReadyError,
    RoleNotFoundError,
    RolePermissionError,
    WriteOutcome,
    delete_premium_role,
    get_active_manual_user_ids,
    get_premium_role_ids,
    get_server_premium_info,
    get_user_premium_info,
    is_premium_server,
    is_premium_user,
    replace_role_sources,
    revoke_manual_premium,
    upsert_premium_role,
)

logger = logging.getLogger(__name__)

ROLE_TOO_LOW = (
    "Bot's role is not high enough to manage this role. "
    "Move the bot's role above the premium role in the server settings."
)
NO_MANAGE_ROLES = "Bot does not have permission to manage roles."


@dataclass
class SyncReport:
    """Counters for one reconciliation pass."""

    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    skipped: bool = False
    role_premium: int = 0
    authoritative: int = 0
    demoted: int = 0
    added: int = 0
    removed: int = 0
    failed: int = 0
    role_sources: int = 0

    def finish(self) -> SyncReport:
        self.finished_at = utcnow()
        return self


class PremiumManager:
    """Resolver and reconciliation loop bound to one engine and config.

    Parameters
    ----------
    engine:
        SQLAlchemy engine for the premium tables.
    cfg:
        Supplies the global premium guild, role and allow-list, and the
        batch pacing for sync passes.
    gateway:
        Discord capability.  May be attached later with :meth:`attach`;
        Discord-backed calls raise :class:`PremiumManagerNotReadyError`
        until then.
    sleep:
        Awaited between member batches.  Tests pass a no-op.
    """

    def __init__(
        self,
        engine: Engine,
        cfg: VeebeeConfig,
        gateway: DiscordGateway | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.engine = engine
        self.cfg = cfg
        self._gateway = gateway
        self._sleep = sleep
        self._sync_lock = asyncio.Lock()
        self.last_report: SyncReport | None = None

    def attach(self, gateway: DiscordGateway) -> None:
        self._gateway = gateway

    @property
    def gateway(self) -> DiscordGateway:
        if self._gateway is None:
            raise PremiumManagerNotReadyError("Premium manager not initialized")
        return self._gateway

    @property
    def sync_running(self) -> bool:
        return self._sync_lock.locked()

    # -----------------------------------------------------------------------
    # Resolver
    # -----------------------------------------------------------------------
    def _global_roles_held(self, guild_id: int, role_ids: set[int]) -> set[int]:
        if guild_id != self.cfg.premium_guild_id:
            return set()
        return role_ids & set(self.cfg.premium_role_ids)

    async def has_premium_access(self, member) -> bool:
        """First matching source wins: server, global role, guild role, manual.

        *member* is anything with ``id``, ``guild.id`` and ``roles`` (each
        with an ``id``), normally a :class:`discord.Member`.
        """
        guild_id = member.guild.id
        role_ids = {role.id for role in member.roles}

        if await run_db(is_premium_server, self.engine, guild_id):
            return True

        if self._global_roles_held(guild_id, role_ids):
            await self.check_and_revoke_non_role_premium(member.id)
            return True

        registered = await run_db(get_premium_role_ids, self.engine, guild_id)
        if role_ids & registered:
            await self.check_and_revoke_non_role_premium(member.id)
            return True

        return await run_db(is_premium_user, self.engine, member.id)

    async def check_and_revoke_non_role_premium(self, user_id: int) -> bool:
        """Drop *user_id*'s manual grant if they hold a global premium role.

        Returns whether the user has role-based premium.  A user who is not
        in the global premium guild gets ``False`` without error.
        """
        try:
            role_ids = await self.gateway.member_role_ids(self.cfg.premium_guild_id, user_id)
        except PremiumManagerNotReadyError:
            raise
        except Exception:
            logger.exception("Error checking role premium for user %s", user_id)
            return False
        if role_ids is None:
            return False
        if not role_ids & set(self.cfg.premium_role_ids):
            return False
        await run_db(revoke_manual_premium, self.engine, user_id)
        return True

    async def resolve_sources(self, member) -> list[PremiumSource]:
        """Every source that currently entitles *member*, primary first."""
        guild_id = member.guild.id
        role_ids = {role.id for role in member.roles}
        now = utcnow()
        sources: list[PremiumSource] = []

        registered = await run_db(get_premium_role_ids, self.engine, guild_id)
        for role_id in sorted(self._global_roles_held(guild_id, role_ids) | (role_ids & registered)):
            sources.append(PremiumSource(
                source_type=SourceType.ROLE, source_id=str(role_id),
                granted_by=SYSTEM_ACTOR, granted_at=None, expires_at=None, is_permanent=True,
            ))

        server = await run_db(get_server_premium_info, self.engine, guild_id, now=now)
        if server is not None and server.active:
            sources.append(PremiumSource(
                source_type=SourceType.SERVER, source_id=str(guild_id),
                granted_by=server.granted_by, granted_at=server.granted_at,
                expires_at=server.expires_at, is_permanent=server.is_permanent,
            ))

        manual = await run_db(get_user_premium_info, self.engine, member.id, now=now)
        if manual is not None and manual.active:
            sources.append(PremiumSource(
                source_type=SourceType.MANUAL, source_id=None,
                granted_by=manual.granted_by, granted_at=manual.granted_at,
                expires_at=manual.expires_at, is_permanent=manual.is_permanent,
            ))

        return sort_sources(sources)

    # -----------------------------------------------------------------------
    # Role registrations
    # -----------------------------------------------------------------------
    async def can_manage_role(self, guild_id: int, role_id: int) -> tuple[bool, str | None]:
        """Non-raising permission check for the command layer."""
        if self._gateway is None or not self._gateway.ready:
            return False, "Premium manager not initialized"
        try:
            access = await self._gateway.role_access(guild_id, role_id)
        except Exception as exc:
            return False, f"Failed to check role permissions: {exc}"
        if not access.role_exists:
            return False, "Role not found"
        if not access.can_manage_roles:
            return False, NO_MANAGE_ROLES
        if not access.above_role:
            return False, ROLE_TOO_LOW
        return True, None

    async def _require_manageable(self, guild_id: int, role_id: int) -> bool:
        """Raise unless the bot can manage the role.  ``False`` if it is gone."""
        access = await self.gateway.role_access(guild_id, role_id)
        if not access.role_exists:
            return False
        if not access.above_role:
            raise RolePermissionError(ROLE_TOO_LOW)
        if not access.can_manage_roles:
            raise RolePermissionError(NO_MANAGE_ROLES)
        return True

    async def add_premium_role(
        self,
        guild_id: int,
        role_id: int,
        added_by: str | int,
        *,
        auto_sync: bool = True,
    ) -> WriteOutcome:
        """Register *role_id* as premium-granting in *guild_id*.

        Raises
        ------
        RoleNotFoundError
            The role does not exist.
        RolePermissionError
            The bot's top role is not above it, or the bot lacks Manage Roles.
        """
        if not await self._require_manageable(guild_id, role_id):
            raise RoleNotFoundError("Role not found")
        return await run_db(
            upsert_premium_role, self.engine, guild_id, role_id, added_by, auto_sync=auto_sync,
        )

    async def remove_premium_role(self, guild_id: int, role_id: int, removed_by: str | int) -> WriteOutcome:
        """Unregister a premium role.  A deleted role just loses its stale row."""
        if not await self._require_manageable(guild_id, role_id):
            logger.info("Premium role %s no longer exists in guild %s; dropping registration",
                        role_id, guild_id)
            return await run_db(
                delete_premium_role, self.engine, guild_id, role_id, removed_by,
                details=f"Removed stale premium role {role_id} from guild {guild_id} (role deleted)",
            )
        return await run_db(delete_premium_role, self.engine, guild_id, role_id, removed_by)

    # -----------------------------------------------------------------------
    # Reconciliation
    # -----------------------------------------------------------------------
    async def sync_premium_roles(self) -> SyncReport:
        """Run one pass, or skip if a pass is already in flight."""
        if self._sync_lock.locked():
            logger.info("Premium role sync already running; skipping this trigger")
            return SyncReport(skipped=True).finish()
        async with self._sync_lock:
            report = await self._sync_pass()
        self.last_report = report
        return report

    async def _sync_pass(self) -> SyncReport:
        gw = self.gateway
        cfg = self.cfg
        guild_id = cfg.premium_guild_id
        report = SyncReport()

        holders = await gw.role_member_ids(guild_id, cfg.premium_role_id)
        if holders is None:
            logger.error("Premium guild %s or premium role %s not found; sync aborted",
                         guild_id, cfg.premium_role_id)
            return report.finish()

        # Step 1: everyone holding an allow-listed role
        by_role: dict[int, set[int]] = {}
        for role_id in cfg.premium_role_ids:
            members = await gw.role_member_ids(guild_id, role_id)
            if members is None:
                logger.warning("Allow-listed premium role %s not found in guild %s", role_id, guild_id)
                continue
            by_role[role_id] = members
        role_premium: set[int] = set().union(*by_role.values())
        report.role_premium = len(role_premium)

        # Step 2: manual grants made redundant by a role
        manual = await run_db(get_active_manual_user_ids, self.engine)
        for user_id in sorted(manual & role_premium):
            outcome = await run_db(revoke_manual_premium, self.engine, user_id)
            if outcome.result:
                report.demoted += 1

        # Step 3: authoritative set
        manual = await run_db(get_active_manual_user_ids, self.engine)
        authoritative = role_premium | manual
        report.authoritative = len(authoritative)
        report.role_sources = await run_db(replace_role_sources, self.engine, by_role)

        # Step 4: add the premium role where missing, in paced batches
        batches = list(batched(sorted(authoritative), cfg.sync_batch_size))
        for index, batch in enumerate(batches):
            try:
                found = await gw.members_with_roles(guild_id, batch)
            except Exception:
                logger.exception("Error fetching member batch %d/%d", index + 1, len(batches))
                report.failed += len(batch)
                found = {}
            for user_id, role_ids in found.items():
                if cfg.premium_role_id in role_ids:
                    continue
                try:
                    await gw.add_role(guild_id, user_id, cfg.premium_role_id,
                                      reason="Premium sync: entitled user")
                    report.added += 1
                    logger.info("Added premium role to %s", user_id)
                except Exception:
                    report.failed += 1
                    logger.exception("Failed to add premium role to %s", user_id)
            if index + 1 < len(batches):
                await self._sleep(cfg.sync_batch_delay_seconds)

        # Step 5: strip the role from holders who are no longer entitled
        for user_id in sorted(holders - authoritative):
            try:
                await gw.remove_role(guild_id, user_id, cfg.premium_role_id,
                                     reason="Premium sync: no longer premium")
                report.removed += 1
                logger.info("Removed premium role from %s (no longer has premium)", user_id)
            except Exception:
                report.failed += 1
                logger.exception("Failed to remove premium role from %s", user_id)

        logger.info(
            "Premium sync: %d entitled (%d by role), +%d -%d, %d demoted, %d failed",
            report.authoritative, report.role_premium, report.added,
            report.removed, report.demoted, report.failed,
        )
        return report.finish()
