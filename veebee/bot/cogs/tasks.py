"""
veebee.bot.cogs.tasks — Premium Role Sync Scheduler
====================================================

Owns the recurring reconciliation pass on a ``discord.ext.tasks`` loop:

- First pass once the bot is ready, then every ``sync_interval_minutes``
  (default 60).
- Started in ``cog_load`` and cancelled in ``cog_unload``, so the timer's
  lifetime is the cog's lifetime.

On-demand passes (``/premium roles sync``, ``/premium system sync-all``) call
the same :meth:`PremiumManager.sync_premium_roles`; its reentrancy guard
skips a trigger that would overlap a running pass.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

if TYPE_CHECKING:
    from veebee.bot.core import VeebeeBot

logger = logging.getLogger(__name__)


class PremiumTasks(commands.Cog):
    """Cog for the scheduled premium role reconciliation."""

    def __init__(self, bot: VeebeeBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        """Start the sync loop at the configured interval."""
        self.premium_sync_loop.change_interval(minutes=self.bot.cfg.sync_interval_minutes)
        self.premium_sync_loop.start()

    async def cog_unload(self) -> None:
        self.premium_sync_loop.cancel()

    @tasks.loop(minutes=60)
    async def premium_sync_loop(self):
        """Run one premium role sync pass."""
        try:
            report = await self.bot.premium.sync_premium_roles()
            if not report.skipped:
                logger.info(
                    "Premium sync task complete: added=%d removed=%d demoted=%d failed=%d",
                    report.added, report.removed, report.demoted, report.failed,
                )
        except Exception:
            logger.exception("Premium sync task failed", extra={"task": "premium_sync"})

    @premium_sync_loop.before_loop
    async def _wait_premium_sync(self):
        await self.bot.wait_until_ready()


async def setup(bot: VeebeeBot) -> None:
    await bot.add_cog(PremiumTasks(bot))
