"""
veebee.services.embeds — Discord embed builders for premium commands
=====================================================================

All embed construction lives here so the premium cog only needs to supply
data — no layout concerns.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

import discord

from veebee.constants import PREMIUM_COLOR, SECONDS_PER_DAY
from veebee.engine.entitlement import PremiumSource, primary_source, remaining_seconds
from veebee.services.audit_service import AuditEntry
from veebee.services.premium_service import PremiumInfo, PremiumStats, RoleRegistration

# Embed descriptions are capped at 4096 characters by Discord.
DESCRIPTION_LIMIT = 4000

_SOURCE_LABELS = {
    "role": "\U0001f3ad Role",
    "server": "\U0001f3e0 Server",
    "manual": "✋ Manual",
}


def timestamp(value: datetime | None, style: str = "R") -> str:
    """Discord timestamp markup, or ``Never`` for ``None``."""
    if value is None:
        return "Never"
    return discord.utils.format_dt(value, style=style)


def _actor(value: str | None) -> str:
    if not value:
        return "Unknown"
    return f"<@{value}>" if value.isdigit() else f"`{value}`"


def _expiry(info: PremiumInfo) -> str:
    if info.is_permanent:
        return "Permanent"
    if info.expires_at is None:
        return "No expiry set"
    return f"{timestamp(info.expires_at, 'F')} ({timestamp(info.expires_at)})"


def _clip(lines: Sequence[str]) -> str:
    out, size = [], 0
    for line in lines:
        if size + len(line) + 1 > DESCRIPTION_LIMIT:
            out.append(f"… and {len(lines) - len(out)} more")
            break
        out.append(line)
        size += len(line) + 1
    return "\n".join(out)


def build_error_embed(message: str) -> discord.Embed:
    return discord.Embed(title="❌ Error", description=message, color=discord.Color.red())


def build_success_embed(title: str, message: str) -> discord.Embed:
    return discord.Embed(title=f"✅ {title}", description=message, color=discord.Color.green())


def build_info_embed(title: str, message: str) -> discord.Embed:
    return discord.Embed(title=title, description=message, color=discord.Color.blurple())


def build_premium_info_embed(title: str, info: PremiumInfo) -> discord.Embed:
    """Detail card for one user or server grant."""
    embed = discord.Embed(
        title=title,
        color=PREMIUM_COLOR if info.active else discord.Color.dark_grey(),
    )
    embed.add_field(name="Status", value="Active" if info.active else "Inactive", inline=True)
    embed.add_field(name="Expires", value=_expiry(info), inline=True)
    if info.active and not info.is_permanent:
        days_left = remaining_seconds(info.expires_at) / SECONDS_PER_DAY
        embed.add_field(name="Time left", value=f"{days_left:.1f} days", inline=True)
    embed.add_field(name="Granted by", value=_actor(info.granted_by), inline=True)
    embed.add_field(name="Granted", value=timestamp(info.granted_at, "F"), inline=True)
    embed.add_field(name="Total time granted", value=f"{info.total_days:g} days", inline=True)
    embed.add_field(name="Times extended", value=str(info.times_extended), inline=True)
    if info.last_extended_at:
        embed.add_field(
            name="Last extended",
            value=f"{timestamp(info.last_extended_at)} by {_actor(info.last_extended_by)}",
            inline=False,
        )
    return embed


def build_status_embed(
    display_name: str,
    has_access: bool,
    sources: Sequence[PremiumSource],
) -> discord.Embed:
    """The member-facing ``/premium status`` card."""
    if not has_access:
        return discord.Embed(
            title="\U0001f48e Premium Status",
            description=f"**{display_name}** does not have premium.",
            color=discord.Color.dark_grey(),
        )

    primary = primary_source(sources)
    lines = []
    for source in sources:
        label = _SOURCE_LABELS.get(source.source_type, source.source_type)
        if source.source_type == "role" and source.source_id:
            label += f" <@&{source.source_id}>"
        if source.is_permanent:
            until = "permanent"
        else:
            until = f"until {timestamp(source.expires_at)}"
        marker = " **(primary)**" if source is primary else ""
        lines.append(f"{label}: {until}{marker}")

    return discord.Embed(
        title="\U0001f48e Premium Status",
        description=(
            f"**{display_name}** has premium.\n\n" + ("\n".join(lines) or "Source unavailable")
        ),
        color=PREMIUM_COLOR,
    )


def build_grant_list_embed(title: str, infos: Sequence[PremiumInfo], mention: str) -> discord.Embed:
    """List of user (``mention='@'``) or server (``mention=''``) grants."""
    if not infos:
        return build_info_embed(title, "Nothing to show.")
    lines = []
    for info in infos:
        target = f"<@{info.target_id}>" if mention == "@" else f"`{info.target_id}`"
        lines.append(f"{target} — {_expiry(info)}")
    return discord.Embed(title=title, description=_clip(lines), color=PREMIUM_COLOR)


def build_roles_embed(guild_name: str, roles: Sequence[RoleRegistration]) -> discord.Embed:
    if not roles:
        return build_info_embed("Premium Roles", f"No premium roles registered in **{guild_name}**.")
    lines = [
        f"<@&{r.role_id}> — added {timestamp(r.added_at)} by {_actor(r.added_by)}"
        + ("" if r.auto_sync else " (sync off)")
        for r in roles
    ]
    return discord.Embed(title=f"Premium Roles — {guild_name}", description=_clip(lines),
                         color=PREMIUM_COLOR)


def build_stats_embed(stats: PremiumStats) -> discord.Embed:
    embed = discord.Embed(title="\U0001f4ca Premium Statistics", color=PREMIUM_COLOR)
    embed.add_field(
        name="Users",
        value=(
            f"Total: {stats.users_total}\nActive: {stats.users_active}\n"
            f"Permanent: {stats.users_permanent}\nAvg. duration: {stats.users_avg_days:.1f} days"
        ),
        inline=True,
    )
    embed.add_field(
        name="Servers",
        value=(
            f"Total: {stats.servers_total}\nActive: {stats.servers_active}\n"
            f"Permanent: {stats.servers_permanent}\nAvg. duration: {stats.servers_avg_days:.1f} days"
        ),
        inline=True,
    )
    embed.add_field(
        name="Roles",
        value=f"Registered: {stats.roles_total}\nAuto-sync: {stats.roles_auto_sync}",
        inline=True,
    )
    return embed


def build_audit_log_embed(entries: Sequence[AuditEntry], days: int, action_type: str) -> discord.Embed:
    title = f"\U0001f4dc Premium Audit Log — last {days} day{'s' if days != 1 else ''}"
    if action_type != "all":
        title += f" ({action_type})"
    if not entries:
        return build_info_embed(title, "No entries in this window.")

    lines = []
    for e in entries:
        target = []
        if e.user_id:
            target.append(f"<@{e.user_id}>")
        if e.guild_id:
            target.append(f"guild `{e.guild_id}`")
        if e.role_id:
            target.append(f"<@&{e.role_id}>")
        lines.append(
            f"{timestamp(e.timestamp)} **{e.action_type}** {' '.join(target)} "
            f"by {_actor(e.performed_by)}"
        )
    return discord.Embed(title=title, description=_clip(lines), color=PREMIUM_COLOR)
