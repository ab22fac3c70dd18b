"""
veebee.bot.core — Bot Instance & Cog Loader
============================================

Defines :class:`VeebeeBot`, a ``commands.AutoShardedBot`` subclass that:

1. Stores the shared config (``bot.cfg``), DB engine (``bot.engine``) and
   premium manager (``bot.premium``) so every Cog can reach them.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).

The premium manager is created up front but only gets its Discord gateway
in ``setup_hook``; the first reconciliation pass waits for ``on_ready``
(see :mod:`veebee.bot.cogs.tasks`).
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from veebee.config import VeebeeConfig
from veebee.services.discord_gateway import DiscordGateway
from veebee.services.premium_manager import PremiumManager

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "veebee.bot.cogs.premium",
    "veebee.bot.cogs.tasks",
]


class VeebeeBot(commands.AutoShardedBot):
    """Sharded bot that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`VeebeeConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` for the premium tables.
    """

    def __init__(self, cfg: VeebeeConfig, engine: Engine) -> None:
        # Privileged: the members intent keeps role.members populated for sync.
        intents = discord.Intents.default()
        intents.members = True
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description="Veebee",
        )

        self.cfg = cfg
        self.engine = engine
        self.premium = PremiumManager(engine, cfg)

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Attach the Discord gateway and load Cog extensions.

        A Cog that fails to load is logged and skipped.
        """
        self.premium.attach(DiscordGateway(self))

        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None
        logger.info(
            "Logged in as %s (ID: %s) on %d shard(s)",
            self.user.name, self.user.id, self.shard_count or 1,
        )

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        await super().close()
