"""
tests/test_tasks.py — Scheduled premium role sync
==================================================
The bot is a SimpleNamespace exposing only ``cfg``, ``premium`` and
``wait_until_ready``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from veebee.bot.cogs.tasks import PremiumTasks
from veebee.services.premium_manager import SyncReport


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


@pytest.fixture
def bot(cfg):
    return SimpleNamespace(
        cfg=replace(cfg, sync_interval_minutes=15),
        premium=SimpleNamespace(sync_premium_roles=AsyncMock(return_value=SyncReport())),
        wait_until_ready=AsyncMock(),
    )


# ===========================================================================
# Lifecycle
# ===========================================================================
class TestLifecycle:
    def test_load_starts_loop_at_configured_interval(self, bot):
        cog = PremiumTasks(bot)

        async def _inner():
            await cog.cog_load()
            try:
                assert cog.premium_sync_loop.minutes == 15
                assert cog.premium_sync_loop.is_running()
            finally:
                cog.premium_sync_loop.cancel()

        run_async(_inner())

    def test_unload_cancels_loop(self, bot):
        cog = PremiumTasks(bot)

        async def _inner():
            await cog.cog_load()
            task = cog.premium_sync_loop.get_task()
            await cog.cog_unload()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            return cog.premium_sync_loop.is_running()

        assert run_async(_inner()) is False


# ===========================================================================
# Loop body
# ===========================================================================
class TestSyncPass:
    def test_runs_one_sync(self, bot):
        cog = PremiumTasks(bot)

        run_async(cog.premium_sync_loop())

        bot.premium.sync_premium_roles.assert_awaited_once()

    def test_failure_is_logged_not_raised(self, bot, caplog):
        bot.premium.sync_premium_roles.side_effect = RuntimeError("gateway down")
        cog = PremiumTasks(bot)

        with caplog.at_level(logging.ERROR, logger="veebee.bot.cogs.tasks"):
            run_async(cog.premium_sync_loop())

        assert "Premium sync task failed" in caplog.text
        assert "gateway down" in caplog.text
