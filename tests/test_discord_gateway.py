"""
tests/test_discord_gateway.py — Id-based Discord facade
========================================================
The client, guild and members are SimpleNamespace / MagicMock stand-ins
exposing only the attributes the gateway touches.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from veebee.services.discord_gateway import MEMBER_QUERY_LIMIT, DiscordGateway


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


def _member(user_id: int, *role_ids: int):
    member = MagicMock()
    member.id = user_id
    member.roles = [SimpleNamespace(id=r) for r in role_ids]
    member.get_role = lambda rid: next((r for r in member.roles if r.id == rid), None)
    member.add_roles = AsyncMock()
    member.remove_roles = AsyncMock()
    return member


def _guild(members: dict, roles: dict):
    guild = MagicMock()
    guild.get_member = members.get
    guild.get_role = roles.get
    guild.fetch_member = AsyncMock(side_effect=discord.NotFound(MagicMock(status=404), "Unknown Member"))
    guild.fetch_roles = AsyncMock(return_value=list(roles.values()))
    return guild


@pytest.fixture
def world():
    alice = _member(1, 20)
    bob = _member(2)
    role = SimpleNamespace(id=20, members=[alice])
    guild = _guild({1: alice, 2: bob}, {20: role})
    client = MagicMock()
    client.get_guild = {10: guild}.get
    client.fetch_guild = AsyncMock(side_effect=discord.NotFound(MagicMock(status=404), "Unknown Guild"))
    return SimpleNamespace(client=client, guild=guild, alice=alice, bob=bob, role=role)


class TestLookups:
    def test_member_role_ids(self, world):
        gw = DiscordGateway(world.client)
        assert run_async(gw.member_role_ids(10, 1)) == {20}
        assert run_async(gw.member_role_ids(10, 99)) is None
        assert run_async(gw.member_role_ids(11, 1)) is None

    def test_role_member_ids(self, world):
        gw = DiscordGateway(world.client)
        assert run_async(gw.role_member_ids(10, 20)) == {1}
        assert run_async(gw.role_member_ids(10, 21)) is None

    def test_members_with_roles_rejects_oversized_batch(self, world):
        gw = DiscordGateway(world.client)
        with pytest.raises(ValueError):
            run_async(gw.members_with_roles(10, list(range(MEMBER_QUERY_LIMIT + 1))))

    def test_members_with_roles(self, world):
        world.guild.query_members = AsyncMock(return_value=[world.alice])
        gw = DiscordGateway(world.client)

        assert run_async(gw.members_with_roles(10, [1, 3])) == {1: {20}}
        world.guild.query_members.assert_awaited_once_with(user_ids=[1, 3], limit=MEMBER_QUERY_LIMIT)


class TestMutations:
    def test_add_role_already_held_is_noop(self, world):
        gw = DiscordGateway(world.client)
        assert run_async(gw.add_role(10, 1, 20, reason="sync")) is True
        world.alice.add_roles.assert_not_awaited()

    def test_add_role(self, world):
        gw = DiscordGateway(world.client)
        assert run_async(gw.add_role(10, 2, 20, reason="sync")) is True
        world.bob.add_roles.assert_awaited_once()

    def test_remove_role_not_held_is_noop(self, world):
        gw = DiscordGateway(world.client)
        assert run_async(gw.remove_role(10, 2, 20, reason="sync")) is True
        world.bob.remove_roles.assert_not_awaited()

    def test_missing_member(self, world):
        gw = DiscordGateway(world.client)
        assert run_async(gw.add_role(10, 99, 20, reason="sync")) is False

    def test_rest_errors_propagate(self, world):
        world.bob.add_roles.side_effect = discord.Forbidden(MagicMock(status=403), "Missing Access")
        gw = DiscordGateway(world.client)
        with pytest.raises(discord.Forbidden):
            run_async(gw.add_role(10, 2, 20, reason="sync"))


class TestRoleAccess:
    def test_missing_role(self, world):
        gw = DiscordGateway(world.client)
        assert not run_async(gw.role_access(10, 21)).role_exists

    def test_bot_above_role(self, world):
        me = MagicMock()
        me.guild_permissions.manage_roles = True
        me.top_role.__gt__ = lambda self, other: True
        world.guild.me = me
        gw = DiscordGateway(world.client)

        access = run_async(gw.role_access(10, 20))

        assert access.role_exists
        assert access.can_manage_roles
        assert access.above_role
