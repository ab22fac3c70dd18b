"""
veebee.bot.cogs.premium — /premium Slash Commands
==================================================

Command tree::

    /premium servers add|remove|list|info      (admin)
    /premium users   add|remove|list|info|extend (admin)
    /premium roles   add|remove|list|sync      (admin)
    /premium system  settings|sync-all|stats|audit-log (admin)
    /premium status [user]
    /premium server | server-remove | server-info

Admin groups require the configured ``admin_role_id``.  Every command maps
onto one premium service / manager call plus an embed; failures become a
short ephemeral message, never a traceback.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from veebee.database.engine import run_db
from veebee.database.models import PremiumKind
from veebee.services.audit_service import get_premium_audit_log
from veebee.services.embeds import (
    build_audit_log_embed,
    build_error_embed,
    build_grant_list_embed,
    build_info_embed,
    build_premium_info_embed,
    build_roles_embed,
    build_stats_embed,
    build_status_embed,
    build_success_embed,
)
from veebee.services.premium_service import (
    PremiumError,
    add_premium_server,
    add_premium_user,
    extend_premium,
    get_premium_roles,
    get_premium_stats,
    get_server_premium_info,
    get_user_premium_info,
    is_premium_server,
    list_premium_servers,
    list_premium_users,
    make_permanent_premium,
    remove_premium_server,
    remove_premium_user,
)

if TYPE_CHECKING:
    from veebee.bot.core import VeebeeBot

logger = logging.getLogger(__name__)


class NotPremiumCheckFailure(app_commands.CheckFailure):
    """Raised by :func:`requires_premium` when the member lacks premium."""


def is_admin():
    """Check that the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: VeebeeBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


def requires_premium():
    """Check that the invoking member has premium access in this guild.

    For use on premium-gated commands in any cog.
    """
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: VeebeeBot = interaction.client  # type: ignore[assignment]
        member = interaction.user
        if interaction.guild is None or not hasattr(member, "roles"):
            raise NotPremiumCheckFailure("This premium feature must be used in a server.")
        if await bot.premium.has_premium_access(member):
            return True
        raise NotPremiumCheckFailure("This feature requires premium access.")
    return app_commands.check(predicate)


AUDIT_TYPES = [
    app_commands.Choice(name="All", value="all"),
    app_commands.Choice(name="Grants", value="ADD"),
    app_commands.Choice(name="Removals", value="REMOVE"),
    app_commands.Choice(name="Extensions", value="EXTEND"),
    app_commands.Choice(name="Made permanent", value="MAKE_PERMANENT"),
    app_commands.Choice(name="Automatic revocations", value="REVOKE"),
    app_commands.Choice(name="Expirations", value="PREMIUM_EXPIRED"),
]


def _parse_guild_id(raw: str) -> int | None:
    raw = raw.strip()
    return int(raw) if raw.isdigit() else None


class Premium(commands.Cog, name="Premium"):
    """Premium entitlement management and status commands."""

    premium = app_commands.Group(name="premium", description="Premium features and management")
    servers = app_commands.Group(name="servers", description="Manage premium servers", parent=premium)
    users = app_commands.Group(name="users", description="Manage premium users", parent=premium)
    roles = app_commands.Group(name="roles", description="Manage premium roles", parent=premium)
    system = app_commands.Group(name="system", description="Manage the premium system", parent=premium)

    def __init__(self, bot: VeebeeBot) -> None:
        self.bot = bot

    @property
    def engine(self):
        return self.bot.engine

    async def _reply(self, interaction: discord.Interaction, **kwargs) -> None:
        if interaction.response.is_done():
            await interaction.followup.send(ephemeral=True, **kwargs)
        else:
            await interaction.response.send_message(ephemeral=True, **kwargs)

    async def _give_premium_role(self, user_id: int) -> None:
        """Best-effort: hand the premium role out right away instead of waiting for sync."""
        cfg = self.bot.cfg
        try:
            await self.bot.premium.gateway.add_role(
                cfg.premium_guild_id, user_id, cfg.premium_role_id,
                reason="Premium granted",
            )
        except Exception:
            logger.exception("Failed to add premium role to %s", user_id)

    # -------------------------------------------------------------------
    # /premium servers ...
    # -------------------------------------------------------------------
    @servers.command(name="add", description="Grant premium to a specific server")
    @app_commands.describe(
        guild_id="The ID of the server to grant premium to",
        days="Number of days (leave empty for permanent)",
        granted_by="User to record as the granter (default: you)",
    )
    @app_commands.rename(guild_id="guild-id", granted_by="granted-by")
    @is_admin()
    async def servers_add(
        self,
        interaction: discord.Interaction,
        guild_id: str,
        days: app_commands.Range[int, 1, 3650] | None = None,
        granted_by: discord.User | None = None,
    ) -> None:
        gid = _parse_guild_id(guild_id)
        if gid is None:
            await self._reply(interaction, embed=build_error_embed("That is not a valid server ID."))
            return
        actor = (granted_by or interaction.user).id
        await run_db(add_premium_server, self.engine, gid, actor, days)
        span = f"for {days} days" if days else "permanently"
        await self._reply(
            interaction,
            embed=build_success_embed("Server Premium Added", f"Server `{gid}` has premium {span}."),
        )

    @servers.command(name="remove", description="Remove premium from a specific server")
    @app_commands.describe(guild_id="The ID of the server to remove premium from")
    @app_commands.rename(guild_id="guild-id")
    @is_admin()
    async def servers_remove(self, interaction: discord.Interaction, guild_id: str) -> None:
        gid = _parse_guild_id(guild_id)
        if gid is None:
            await self._reply(interaction, embed=build_error_embed("That is not a valid server ID."))
            return
        outcome = await run_db(remove_premium_server, self.engine, gid, interaction.user.id)
        if outcome.result:
            await self._reply(interaction, embed=build_success_embed(
                "Server Premium Removed", f"Removed premium from server `{gid}`."))
        else:
            await self._reply(interaction, embed=build_info_embed(
                "Nothing to remove", f"Server `{gid}` had no premium grant."))

    @servers.command(name="list", description="List all premium servers")
    @is_admin()
    async def servers_list(self, interaction: discord.Interaction) -> None:
        infos = await run_db(list_premium_servers, self.engine)
        await self._reply(
            interaction,
            embed=build_grant_list_embed(f"Premium Servers ({len(infos)})", infos, mention=""),
        )

    @servers.command(name="info", description="Get detailed info about a premium server")
    @app_commands.describe(guild_id="The ID of the server to get info about")
    @app_commands.rename(guild_id="guild-id")
    @is_admin()
    async def servers_info(self, interaction: discord.Interaction, guild_id: str) -> None:
        gid = _parse_guild_id(guild_id)
        info = await run_db(get_server_premium_info, self.engine, gid) if gid else None
        if info is None:
            await self._reply(interaction, embed=build_error_embed("That server does not have premium."))
            return
        guild = self.bot.get_guild(gid)
        title = f"Server Premium — {guild.name if guild else gid}"
        embed = build_premium_info_embed(title, info)
        embed.add_field(name="Bot access", value="Yes" if guild else "No", inline=True)
        if guild and guild.member_count:
            embed.add_field(name="Members", value=str(guild.member_count), inline=True)
        await self._reply(interaction, embed=embed)

    # -------------------------------------------------------------------
    # /premium users ...
    # -------------------------------------------------------------------
    @users.command(name="add", description="Grant premium to a user")
    @app_commands.describe(
        user="User to grant premium access",
        days="Number of days (default from config)",
        permanent="Whether to grant permanent access",
    )
    @is_admin()
    async def users_add(
        self,
        interaction: discord.Interaction,
        user: discord.User,
        days: app_commands.Range[int, 1, 3650] | None = None,
        permanent: bool = False,
    ) -> None:
        days = days or self.bot.cfg.default_duration_days
        await run_db(add_premium_user, self.engine, user.id, days, interaction.user.id)
        if permanent:
            await run_db(make_permanent_premium, self.engine, PremiumKind.USER, user.id, interaction.user.id)
        await self._give_premium_role(user.id)

        span = "permanent" if permanent else f"{days}-day"
        await self._reply(interaction, embed=build_success_embed(
            "User Premium Added", f"Added {span} premium access for {user.mention}."))

    @users.command(name="remove", description="Remove premium from a user")
    @app_commands.describe(user="User to remove premium from")
    @is_admin()
    async def users_remove(self, interaction: discord.Interaction, user: discord.User) -> None:
        await run_db(remove_premium_user, self.engine, user.id, interaction.user.id)
        await self._reply(interaction, embed=build_success_embed(
            "User Premium Removed", f"Removed premium access from {user.mention}."))

    @users.command(name="list", description="List all premium users")
    @is_admin()
    async def users_list(self, interaction: discord.Interaction) -> None:
        infos = await run_db(list_premium_users, self.engine)
        await self._reply(
            interaction,
            embed=build_grant_list_embed(f"Premium Users ({len(infos)})", infos, mention="@"),
        )

    @users.command(name="info", description="Get detailed info about a premium user")
    @app_commands.describe(user="User to get info about")
    @is_admin()
    async def users_info(self, interaction: discord.Interaction, user: discord.User) -> None:
        info = await run_db(get_user_premium_info, self.engine, user.id)
        if info is None:
            await self._reply(interaction, embed=build_info_embed(
                "No Manual Premium", f"{user.mention} has no manual premium grant."))
            return
        await self._reply(
            interaction,
            embed=build_premium_info_embed(f"User Premium — {user.display_name}", info),
        )

    @users.command(name="extend", description="Extend a user's premium duration")
    @app_commands.describe(user="User to extend premium for", days="Number of days to extend")
    @is_admin()
    async def users_extend(
        self,
        interaction: discord.Interaction,
        user: discord.User,
        days: app_commands.Range[int, 1, 3650],
    ) -> None:
        outcome = await run_db(
            extend_premium, self.engine, PremiumKind.USER, user.id, days, interaction.user.id,
        )
        until = "permanent" if outcome.result is None else discord.utils.format_dt(outcome.result, "F")
        await self._reply(interaction, embed=build_success_embed(
            "Premium Extended", f"Extended {user.mention} by {days} days (now {until})."))

    # -------------------------------------------------------------------
    # /premium roles ...
    # -------------------------------------------------------------------
    @roles.command(name="add", description="Add a role that grants premium access")
    @app_commands.describe(role="Role to grant premium access", auto_sync="Keep members in sync automatically")
    @app_commands.rename(auto_sync="auto-sync")
    @is_admin()
    async def roles_add(
        self,
        interaction: discord.Interaction,
        role: discord.Role,
        auto_sync: bool = True,
    ) -> None:
        await self.bot.premium.add_premium_role(
            role.guild.id, role.id, interaction.user.id, auto_sync=auto_sync,
        )
        await self._reply(interaction, embed=build_success_embed(
            "Premium Role Added", f"Members of {role.mention} now have premium in this server."))

    @roles.command(name="remove", description="Remove a premium access role")
    @app_commands.describe(role="Role to remove premium access from")
    @is_admin()
    async def roles_remove(self, interaction: discord.Interaction, role: discord.Role) -> None:
        await self.bot.premium.remove_premium_role(role.guild.id, role.id, interaction.user.id)
        await self._reply(interaction, embed=build_success_embed(
            "Premium Role Removed", f"{role.mention} no longer grants premium."))

    @roles.command(name="list", description="List all roles that grant premium access")
    @is_admin()
    async def roles_list(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        if guild is None:
            await self._reply(interaction, content="This command must be used in a server.")
            return
        regs = await run_db(get_premium_roles, self.engine, guild.id)
        await self._reply(interaction, embed=build_roles_embed(guild.name, regs))

    @roles.command(name="sync", description="Sync the premium role for all members")
    @app_commands.describe(role="Specific role to sync (optional)")
    @is_admin()
    async def roles_sync(self, interaction: discord.Interaction, role: discord.Role | None = None) -> None:
        await self._run_sync(interaction, role)

    # -------------------------------------------------------------------
    # /premium system ...
    # -------------------------------------------------------------------
    @system.command(name="settings", description="View premium system settings")
    @is_admin()
    async def system_settings(self, interaction: discord.Interaction) -> None:
        cfg = self.bot.cfg
        roles = ", ".join(f"<@&{r}>" for r in cfg.premium_role_ids) or "None"
        await self._reply(interaction, embed=build_info_embed(
            "Premium System Settings",
            f"• Default duration: {cfg.default_duration_days} days\n"
            f"• Sync interval: {cfg.sync_interval_minutes} minutes\n"
            f"• Sync batch: {cfg.sync_batch_size} members, "
            f"{cfg.sync_batch_delay_seconds:g}s apart\n"
            f"• Premium role: <@&{cfg.premium_role_id}>\n"
            f"• Global premium roles: {roles}\n"
            f"• Admin role: <@&{cfg.admin_role_id}>\n\n"
            "Settings are read from `config.yaml`.",
        ))

    @system.command(name="sync-all", description="Run a full premium sync now")
    @is_admin()
    async def system_sync_all(self, interaction: discord.Interaction) -> None:
        await self._run_sync(interaction)

    @system.command(name="stats", description="View premium system statistics")
    @is_admin()
    async def system_stats(self, interaction: discord.Interaction) -> None:
        stats = await run_db(get_premium_stats, self.engine)
        embed = build_stats_embed(stats)
        report = self.bot.premium.last_report
        if report is not None and report.finished_at is not None:
            embed.add_field(
                name="Last sync",
                value=(
                    f"{discord.utils.format_dt(report.finished_at, 'R')}: "
                    f"+{report.added} -{report.removed}, {report.failed} failed"
                ),
                inline=False,
            )
        await self._reply(interaction, embed=embed)

    @system.command(name="audit-log", description="View the premium audit log")
    @app_commands.describe(days="Number of days of logs to show", action_type="Type of actions to show")
    @app_commands.rename(action_type="type")
    @app_commands.choices(action_type=AUDIT_TYPES)
    @is_admin()
    async def system_audit_log(
        self,
        interaction: discord.Interaction,
        days: app_commands.Range[int, 1, 365] = 7,
        action_type: str = "all",
    ) -> None:
        entries = await run_db(get_premium_audit_log, self.engine, days, action_type, limit=50)
        await self._reply(interaction, embed=build_audit_log_embed(entries, days, action_type))

    async def _run_sync(self, interaction: discord.Interaction, role: discord.Role | None = None) -> None:
        """Run a full pass.  *role* is only echoed back; every allow-listed role is synced."""
        await interaction.response.defer(ephemeral=True, thinking=True)
        report = await self.bot.premium.sync_premium_roles()
        if report.skipped:
            await self._reply(interaction, embed=build_info_embed(
                "Sync Already Running", "A premium sync pass is in progress; try again shortly."))
            return
        summary = (
            f"{report.authoritative} entitled users\n"
            f"Added: {report.added} · Removed: {report.removed} · "
            f"Demoted manual grants: {report.demoted} · Failed: {report.failed}"
        )
        if role is not None:
            summary = f"Synced premium status (including {role.mention})\n" + summary
        await self._reply(interaction, embed=build_success_embed("Premium Sync Complete", summary))

    # -------------------------------------------------------------------
    # /premium status | server | server-remove | server-info
    # -------------------------------------------------------------------
    @premium.command(name="status", description="Check premium access status")
    @app_commands.describe(user="User to check (defaults to you)")
    async def status(self, interaction: discord.Interaction, user: discord.Member | None = None) -> None:
        target = user or interaction.user
        if interaction.guild is None or not isinstance(target, discord.Member):
            await self._reply(interaction, content="This command must be used in a server.")
            return
        await interaction.response.defer(ephemeral=True)
        has_access = await self.bot.premium.has_premium_access(target)
        sources = await self.bot.premium.resolve_sources(target) if has_access else []
        await self._reply(interaction, embed=build_status_embed(target.display_name, has_access, sources))

    @premium.command(name="server", description="Grant premium access to this server")
    async def server(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        member = interaction.user
        if guild is None or not isinstance(member, discord.Member):
            await self._reply(interaction, content="This command can only be used in a server.")
            return
        if not member.guild_permissions.manage_guild:
            await self._reply(interaction, content=(
                "You need the Manage Server permission to grant premium access to this server."))
            return

        await interaction.response.defer(ephemeral=True)
        cfg = self.bot.cfg
        premium_guild = self.bot.get_guild(cfg.premium_guild_id)
        if premium_guild is None:
            await self._reply(interaction, content="Unable to verify premium status right now.")
            return
        premium_member = premium_guild.get_member(member.id)
        if premium_member is None:
            await self._reply(interaction, content=(
                "You must be a member of the premium server to grant premium access."))
            return
        if not await self.bot.premium.has_premium_access(premium_member):
            await self._reply(interaction, content=(
                "You must have premium access yourself to grant it to a server."))
            return
        if await run_db(is_premium_server, self.engine, guild.id):
            await self._reply(interaction, content=(
                "This server already has premium access! Use `/premium server-info` to see details."))
            return

        await run_db(add_premium_server, self.engine, guild.id, member.id)
        await self._reply(interaction, embed=build_success_embed(
            "Server Premium Granted",
            f"**{guild.name}** now has premium access.\n"
            "• `/premium server-info` shows the details\n"
            "• Only you (as the granter) can remove it with `/premium server-remove`",
        ))

    @premium.command(name="server-remove", description="Remove premium access from this server")
    async def server_remove(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        member = interaction.user
        if guild is None or not isinstance(member, discord.Member):
            await self._reply(interaction, content="This command can only be used in a server.")
            return
        if not member.guild_permissions.manage_guild:
            await self._reply(interaction, content="You need the Manage Server permission to use this command.")
            return
        info = await run_db(get_server_premium_info, self.engine, guild.id)
        if info is None or not info.active:
            await self._reply(interaction, content="This server doesn't have premium access.")
            return
        if info.granted_by != str(member.id):
            await self._reply(interaction, content="Only the user who added premium access can remove it.")
            return
        await run_db(remove_premium_server, self.engine, guild.id, member.id)
        await self._reply(interaction, embed=build_success_embed(
            "Server Premium Removed", "Premium access was removed from this server."))

    @premium.command(name="server-info", description="Check this server's premium status")
    async def server_info(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        if guild is None:
            await self._reply(interaction, content="This command can only be used in a server.")
            return
        info = await run_db(get_server_premium_info, self.engine, guild.id)
        if info is None or not info.active:
            await self._reply(interaction, content="This server does not have premium access.")
            return
        await self._reply(interaction, embed=build_premium_info_embed(f"Server Premium — {guild.name}", info))

    # -------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------
    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, NotPremiumCheckFailure):
            await self._reply(interaction, content=f"💎 {error}")
        elif isinstance(error, app_commands.CheckFailure):
            await self._reply(interaction, content="🔒 You need the Admin role to use this command.")
        elif isinstance(error, app_commands.CommandInvokeError) and isinstance(error.original, PremiumError):
            await self._reply(interaction, embed=build_error_embed(str(error.original)))
        else:
            logger.exception("Premium command failed", exc_info=error)
            await self._reply(interaction, embed=build_error_embed(
                "An error occurred while processing this command. Please try again."))


async def setup(bot: VeebeeBot) -> None:
    await bot.add_cog(Premium(bot))
