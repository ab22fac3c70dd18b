"""
veebee.services.discord_gateway — Discord Capability Surface
=============================================================

The premium manager never touches ``discord.py`` objects directly.  It talks
to this thin, id-based wrapper, which keeps three rules in one place:

- "Not found" is a value, not a crash: missing guilds, roles and members
  come back as ``None`` (or an empty result).
- Adding a role a member already holds, or removing one they lack, is a
  successful no-op.
- Anything else the REST layer raises (rate limits, 5xx, ``Forbidden``)
  propagates so the caller can decide whether to skip or surface it.

Tests substitute a fake with the same coroutine methods.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import discord

logger = logging.getLogger(__name__)

# Discord's ceiling for a member query by explicit user ids.
MEMBER_QUERY_LIMIT = 100


@dataclass(frozen=True, slots=True)
class RoleAccess:
    """What the bot can do with one role in one guild."""

    role_exists: bool
    can_manage_roles: bool = False
    above_role: bool = False


class DiscordGateway:
    """Id-based facade over a connected :class:`discord.Client`."""

    def __init__(self, client: discord.Client) -> None:
        self._client = client

    @property
    def ready(self) -> bool:
        return self._client.is_ready()

    # -----------------------------------------------------------------------
    # Lookups (None on NotFound)
    # -----------------------------------------------------------------------
    async def _guild(self, guild_id: int) -> discord.Guild | None:
        guild = self._client.get_guild(guild_id)
        if guild is not None:
            return guild
        try:
            return await self._client.fetch_guild(guild_id)
        except (discord.NotFound, discord.Forbidden):
            return None

    async def _role(self, guild: discord.Guild, role_id: int) -> discord.Role | None:
        role = guild.get_role(role_id)
        if role is not None:
            return role
        try:
            roles = await guild.fetch_roles()
        except discord.NotFound:
            return None
        return discord.utils.get(roles, id=role_id)

    async def _member(self, guild: discord.Guild, user_id: int) -> discord.Member | None:
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound:
            return None

    async def member_role_ids(self, guild_id: int, user_id: int) -> set[int] | None:
        """Role ids held by *user_id* in *guild_id*; ``None`` if either is absent."""
        guild = await self._guild(guild_id)
        if guild is None:
            return None
        member = await self._member(guild, user_id)
        if member is None:
            return None
        return {role.id for role in member.roles}

    async def role_member_ids(self, guild_id: int, role_id: int) -> set[int] | None:
        """Current holders of a role from the member cache; ``None`` if absent.

        Needs the members intent so the cache is chunked.
        """
        guild = await self._guild(guild_id)
        if guild is None:
            return None
        role = await self._role(guild, role_id)
        if role is None:
            return None
        return {member.id for member in role.members}

    async def members_with_roles(self, guild_id: int, user_ids: list[int]) -> dict[int, set[int]]:
        """Batch-fetch members by id; returns ``{user_id: role_ids}`` for those found.

        At most :data:`MEMBER_QUERY_LIMIT` ids per call.
        """
        if len(user_ids) > MEMBER_QUERY_LIMIT:
            raise ValueError(f"at most {MEMBER_QUERY_LIMIT} user ids per query")
        guild = await self._guild(guild_id)
        if guild is None or not user_ids:
            return {}
        members = await guild.query_members(user_ids=user_ids, limit=MEMBER_QUERY_LIMIT)
        return {m.id: {r.id for r in m.roles} for m in members}

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------
    async def add_role(self, guild_id: int, user_id: int, role_id: int, *, reason: str) -> bool:
        """Give *role_id* to the member.  Returns ``False`` if the member is gone."""
        guild = await self._guild(guild_id)
        member = await self._member(guild, user_id) if guild else None
        if member is None:
            return False
        if member.get_role(role_id) is not None:
            return True
        await member.add_roles(discord.Object(id=role_id), reason=reason)
        return True

    async def remove_role(self, guild_id: int, user_id: int, role_id: int, *, reason: str) -> bool:
        guild = await self._guild(guild_id)
        member = await self._member(guild, user_id) if guild else None
        if member is None:
            return False
        if member.get_role(role_id) is None:
            return True
        await member.remove_roles(discord.Object(id=role_id), reason=reason)
        return True

    # -----------------------------------------------------------------------
    # Permission check
    # -----------------------------------------------------------------------
    async def role_access(self, guild_id: int, role_id: int) -> RoleAccess:
        """Whether the role exists, and whether the bot could assign it."""
        guild = await self._guild(guild_id)
        if guild is None:
            return RoleAccess(role_exists=False)
        role = await self._role(guild, role_id)
        if role is None:
            return RoleAccess(role_exists=False)
        me = guild.me
        if me is None:
            return RoleAccess(role_exists=True)
        return RoleAccess(
            role_exists=True,
            can_manage_roles=me.guild_permissions.manage_roles,
            above_role=me.top_role > role,
        )
