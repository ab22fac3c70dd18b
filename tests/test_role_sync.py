"""
tests/test_role_sync.py — Premium role reconciliation passes
=============================================================
Guild layout used throughout (users 1-4 in the premium guild):

    1  allow-listed role A + premium role
    2  allow-listed role B
    3  manual grant only
    4  premium role only (no longer entitled)
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from conftest import GLOBAL_ROLE_A, GLOBAL_ROLE_B, PREMIUM_GUILD, PREMIUM_ROLE, FakeGateway
from veebee.config import load_config
from veebee.services import premium_manager as pm
from veebee.services import premium_service as ps
from veebee.services.premium_manager import PremiumManager

EXAMPLE_CONFIG = Path(__file__).parent.parent / "config.yaml.example"


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def manager(db_engine, cfg, gateway, sleeper):
    gateway.add_member(PREMIUM_GUILD, 1, GLOBAL_ROLE_A, PREMIUM_ROLE)
    gateway.add_member(PREMIUM_GUILD, 2, GLOBAL_ROLE_B)
    gateway.add_member(PREMIUM_GUILD, 3)
    gateway.add_member(PREMIUM_GUILD, 4, PREMIUM_ROLE)
    ps.add_premium_user(db_engine, 3, 30, "admin")
    return PremiumManager(db_engine, cfg, gateway, sleep=sleeper)


# ===========================================================================
# Convergence
# ===========================================================================
class TestSyncPass:
    def test_converges_on_entitled_set(self, manager, gateway):
        report = run_async(manager.sync_premium_roles())

        assert gateway.holders(PREMIUM_GUILD, PREMIUM_ROLE) == {1, 2, 3}
        assert report.role_premium == 2
        assert report.authoritative == 3
        assert report.added == 2
        assert report.removed == 1
        assert report.failed == 0
        assert report.finished_at is not None
        assert manager.last_report is report

    def test_second_pass_changes_nothing(self, manager, gateway):
        run_async(manager.sync_premium_roles())
        gateway.calls.clear()

        report = run_async(manager.sync_premium_roles())

        assert gateway.holders(PREMIUM_GUILD, PREMIUM_ROLE) == {1, 2, 3}
        assert report.added == 0
        assert report.removed == 0
        assert [c for c in gateway.calls if c[0] != "query"] == []

    def test_manual_grant_covered_by_role_is_demoted(self, manager, db_engine):
        ps.add_premium_user(db_engine, 1, 30, "admin")

        report = run_async(manager.sync_premium_roles())

        assert report.demoted == 1
        assert ps.get_user_premium_info(db_engine, 1) is None
        assert ps.get_user_premium_info(db_engine, 3) is not None

    def test_demotion_counted_only_when_grant_removed(self, manager, db_engine, monkeypatch):
        ps.add_premium_user(db_engine, 1, 30, "admin")
        monkeypatch.setattr(
            pm, "revoke_manual_premium",
            lambda engine, user_id: ps.WriteOutcome(result=False, audited=False),
        )

        report = run_async(manager.sync_premium_roles())

        assert report.demoted == 0
        assert ps.get_user_premium_info(db_engine, 1) is not None

    def test_lapsed_manual_grant_loses_role(self, manager, db_engine, gateway):
        ps.remove_premium_user(db_engine, 3, "admin")
        gateway.members[PREMIUM_GUILD][3].add(PREMIUM_ROLE)

        run_async(manager.sync_premium_roles())

        assert 3 not in gateway.holders(PREMIUM_GUILD, PREMIUM_ROLE)

    def test_role_sources_refreshed(self, manager, db_engine):
        report = run_async(manager.sync_premium_roles())

        assert report.role_sources == 2
        assert [s.source_id for s in ps.list_premium_sources(db_engine, 1)] == [str(GLOBAL_ROLE_A)]
        assert [s.source_id for s in ps.list_premium_sources(db_engine, 2)] == [str(GLOBAL_ROLE_B)]


# ===========================================================================
# Batching and pacing
# ===========================================================================
class TestBatching:
    def test_batches_respect_size_and_pause_between(self, manager, gateway, sleeper, cfg):
        run_async(manager.sync_premium_roles())

        queries = [c for c in gateway.calls if c[0] == "query"]
        assert [c[2] for c in queries] == [(1, 2), (3,)]
        assert sleeper.delays == [cfg.sync_batch_delay_seconds]

    def test_batch_fetch_failure_counts_batch(self, manager, gateway):
        async def _broken(guild_id, user_ids):
            raise RuntimeError("rate limited")

        gateway.members_with_roles = _broken

        report = run_async(manager.sync_premium_roles())

        assert report.failed == 3
        assert report.added == 0
        assert report.removed == 1


# ===========================================================================
# Failure isolation
# ===========================================================================
class TestFailures:
    def test_member_failure_does_not_stop_pass(self, manager, gateway):
        gateway.fail_add.add(2)

        report = run_async(manager.sync_premium_roles())

        assert report.failed == 1
        assert report.added == 1
        assert gateway.holders(PREMIUM_GUILD, PREMIUM_ROLE) == {1, 3}

    def test_remove_failure_is_counted(self, manager, gateway):
        gateway.fail_remove.add(4)

        report = run_async(manager.sync_premium_roles())

        assert report.failed == 1
        assert 4 in gateway.holders(PREMIUM_GUILD, PREMIUM_ROLE)

    def test_missing_premium_role_aborts(self, manager, gateway):
        gateway.roles[PREMIUM_GUILD].discard(PREMIUM_ROLE)

        report = run_async(manager.sync_premium_roles())

        assert report.authoritative == 0
        assert gateway.calls == []

    def test_missing_allow_listed_role_is_skipped(self, manager, gateway):
        gateway.roles[PREMIUM_GUILD].discard(GLOBAL_ROLE_B)

        report = run_async(manager.sync_premium_roles())

        assert report.role_premium == 1
        assert gateway.holders(PREMIUM_GUILD, PREMIUM_ROLE) == {1, 3}


# ===========================================================================
# Reentrancy
# ===========================================================================
class TestReentrancy:
    def test_overlapping_trigger_is_skipped(self, manager, gateway):
        async def _inner():
            async with manager._sync_lock:
                assert manager.sync_running
                return await manager.sync_premium_roles()

        report = run_async(_inner())

        assert report.skipped
        assert gateway.calls == []
        assert manager.last_report is None
        assert not manager.sync_running


# ===========================================================================
# Shipped configuration
# ===========================================================================
class TestExampleConfig:
    def test_unentitled_holder_loses_synced_role(self, db_engine, sleeper):
        cfg = load_config(EXAMPLE_CONFIG)
        allowed = cfg.premium_role_ids[0]
        gw = FakeGateway()
        gw.add_roles(cfg.premium_guild_id, cfg.premium_role_id, *cfg.premium_role_ids)
        gw.add_member(cfg.premium_guild_id, 1, allowed)
        gw.add_member(cfg.premium_guild_id, 4, cfg.premium_role_id)

        report = run_async(PremiumManager(db_engine, cfg, gw, sleep=sleeper).sync_premium_roles())

        assert gw.holders(cfg.premium_guild_id, cfg.premium_role_id) == {1}
        assert report.removed == 1
        assert report.added == 1
