"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy import BigInteger, Engine, create_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from veebee.config import VeebeeConfig
from veebee.database.models import Base
from veebee.services.discord_gateway import RoleAccess


# ---------------------------------------------------------------------------
# Map BigInteger → INTEGER on SQLite so snowflake columns behave like rowids.
# ---------------------------------------------------------------------------
@compiles(BigInteger, "sqlite")
def _compile_bigint_as_integer(type_, compiler, **kw):
    return "INTEGER"


PREMIUM_GUILD = 1000
PREMIUM_ROLE = 2000          # role kept in sync
GLOBAL_ROLE_A = 2001         # allow-listed global premium roles
GLOBAL_ROLE_B = 2002
ADMIN_ROLE = 3000


def make_engine() -> Engine:
    """In-memory SQLite shared across threads (``run_db`` uses to_thread)."""
    return create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all premium tables."""
    engine = make_engine()
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def bare_engine() -> Engine:
    """In-memory SQLite engine with no tables, for migration tests."""
    return make_engine()


@pytest.fixture
def cfg() -> VeebeeConfig:
    return VeebeeConfig(
        bot_prefix="!",
        admin_role_id=ADMIN_ROLE,
        premium_guild_id=PREMIUM_GUILD,
        premium_role_id=PREMIUM_ROLE,
        premium_role_ids=(GLOBAL_ROLE_A, GLOBAL_ROLE_B),
        sync_batch_size=2,
        sync_batch_delay_seconds=0.0,
    )


# ---------------------------------------------------------------------------
# Discord fakes
# ---------------------------------------------------------------------------
class FakeGateway:
    """In-memory stand-in for :class:`DiscordGateway`.

    ``members`` maps guild id → {user id: set of role ids}; ``roles`` maps
    guild id → ids of roles that exist.  Role mutations update ``members``
    so a second sync pass sees the result of the first.
    """

    def __init__(self) -> None:
        self.members: dict[int, dict[int, set[int]]] = {}
        self.roles: dict[int, set[int]] = {}
        self.access: dict[tuple[int, int], RoleAccess] = {}
        self.ready = True
        self.calls: list[tuple] = []
        self.fail_add: set[int] = set()
        self.fail_remove: set[int] = set()

    def add_member(self, guild_id: int, user_id: int, *role_ids: int) -> None:
        self.members.setdefault(guild_id, {})[user_id] = set(role_ids)

    def add_roles(self, guild_id: int, *role_ids: int) -> None:
        self.roles.setdefault(guild_id, set()).update(role_ids)

    def holders(self, guild_id: int, role_id: int) -> set[int]:
        return {uid for uid, r in self.members.get(guild_id, {}).items() if role_id in r}

    async def member_role_ids(self, guild_id, user_id):
        members = self.members.get(guild_id)
        if members is None or user_id not in members:
            return None
        return set(members[user_id])

    async def role_member_ids(self, guild_id, role_id):
        if role_id not in self.roles.get(guild_id, set()):
            return None
        return self.holders(guild_id, role_id)

    async def members_with_roles(self, guild_id, user_ids):
        self.calls.append(("query", guild_id, tuple(user_ids)))
        members = self.members.get(guild_id, {})
        return {uid: set(members[uid]) for uid in user_ids if uid in members}

    async def add_role(self, guild_id, user_id, role_id, *, reason):
        self.calls.append(("add", user_id, role_id))
        if user_id in self.fail_add:
            raise RuntimeError("Missing Access")
        member = self.members.get(guild_id, {}).get(user_id)
        if member is None:
            return False
        member.add(role_id)
        return True

    async def remove_role(self, guild_id, user_id, role_id, *, reason):
        self.calls.append(("remove", user_id, role_id))
        if user_id in self.fail_remove:
            raise RuntimeError("Missing Access")
        member = self.members.get(guild_id, {}).get(user_id)
        if member is None:
            return False
        member.discard(role_id)
        return True

    async def role_access(self, guild_id, role_id):
        if role_id not in self.roles.get(guild_id, set()):
            return RoleAccess(role_exists=False)
        return self.access.get(
            (guild_id, role_id),
            RoleAccess(role_exists=True, can_manage_roles=True, above_role=True),
        )


@pytest.fixture
def gateway() -> FakeGateway:
    gw = FakeGateway()
    gw.add_roles(PREMIUM_GUILD, PREMIUM_ROLE, GLOBAL_ROLE_A, GLOBAL_ROLE_B)
    return gw


def make_member(user_id: int, guild_id: int, *role_ids: int):
    """Duck-typed ``discord.Member``: ``id``, ``guild.id``, ``roles[].id``."""
    return SimpleNamespace(
        id=user_id,
        guild=SimpleNamespace(id=guild_id),
        roles=[SimpleNamespace(id=r) for r in role_ids],
        display_name=f"user{user_id}",
    )
