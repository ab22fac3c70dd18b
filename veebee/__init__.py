"""
Veebee — Premium Entitlement Engine for a Discord Bot
======================================================
Decides who is premium (manual grants, server-wide grants, premium roles),
keeps the premium role in the global premium guild in sync with that
decision, and records every change in an append-only audit log.

Package layout::

    veebee/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Actor tags, audit action tags, colours
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # Premium ORM models
    │   └── migrations.py  # Non-destructive runtime schema repairs
    ├── engine/
    │   └── entitlement.py # Pure rules: activity, precedence, extension
    ├── services/
    │   ├── audit_service.py    # premium_audit_log writes + reads
    │   ├── premium_service.py  # Grant / revoke / read store layer
    │   ├── premium_manager.py  # Resolver + role reconciliation
    │   ├── discord_gateway.py  # Id-based Discord capability
    │   └── embeds.py           # Embed builders
    ├── bot/
    │   ├── core.py        # AutoShardedBot subclass, cog loader
    │   └── cogs/
    │       ├── premium.py # /premium command tree
    │       └── tasks.py   # Scheduled premium role sync
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine, config, Discord-token auth
        └── routes/
            └── premium.py # subscribe / status / cancel
"""

__version__ = "0.1.0"
