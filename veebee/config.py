"""
veebee.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for the **non-secret** settings the premium engine
needs: which guild and roles are authoritative for global premium, who may
run the admin commands, and how the role sync is paced.  Secrets (bot token,
database URL) stay in ``.env``.

Usage::

    from veebee.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.premium_guild_id)      # 1293118933498462311
    print(cfg.premium_role_ids)      # (1293120587112411207, ...)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class VeebeeConfig:
    """Immutable configuration loaded from ``config.yaml``.

    The global premium guild/role identifiers live here instead of in code so
    the engine can be pointed at fixture ids in tests.
    """

    # Discord
    bot_prefix: str
    admin_role_id: int  # Role required for /premium admin groups

    # Global premium
    premium_guild_id: int            # The one guild whose roles grant global premium
    premium_role_id: int             # Role kept in sync by the reconciliation loop
    premium_role_ids: tuple[int, ...]  # Allow-list: holding any of these = premium

    # Grants
    default_duration_days: int = 30

    # Role sync pacing
    sync_interval_minutes: int = 60
    sync_batch_size: int = 100          # Discord member-query ceiling
    sync_batch_delay_seconds: float = 1.0

    # HTTP API
    api_port: int = 3000

    def __post_init__(self) -> None:
        if self.premium_role_id in self.premium_role_ids:
            raise ValueError(
                f"premium_role_id {self.premium_role_id} must not be listed in "
                "premium_role_ids; holders of the synced role would never lose it."
            )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> VeebeeConfig:
    """Read *path* and return a :class:`VeebeeConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If ``premium_role_id`` also appears in ``premium_role_ids``.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh)

    return VeebeeConfig(
        bot_prefix=raw["bot_prefix"],
        admin_role_id=int(raw["admin_role_id"]),
        premium_guild_id=int(raw["premium_guild_id"]),
        premium_role_id=int(raw["premium_role_id"]),
        premium_role_ids=tuple(int(r) for r in raw["premium_role_ids"]),
        default_duration_days=int(raw.get("default_duration_days", 30)),
        sync_interval_minutes=int(raw.get("sync_interval_minutes", 60)),
        sync_batch_size=int(raw.get("sync_batch_size", 100)),
        sync_batch_delay_seconds=float(raw.get("sync_batch_delay_seconds", 1.0)),
        api_port=int(raw.get("api_port", 3000)),
    )
