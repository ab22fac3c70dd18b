"""
veebee.constants — Shared Constants
====================================

Single source of truth for actor tags, audit action tags and presentation
colours.  Import from here instead of repeating string literals in cogs,
services and the API.
"""

from __future__ import annotations

import enum

# ---------------------------------------------------------------------------
# Non-user actors recorded in granted_by / performed_by columns
# ---------------------------------------------------------------------------
SYSTEM_ACTOR = "SYSTEM"
MIGRATION_ACTOR = "SYSTEM_MIGRATION"
API_SUBSCRIPTION_ACTOR = "API_SUBSCRIPTION"
API_CANCEL_ACTOR = "API_SUBSCRIPTION_CANCEL"

SECONDS_PER_DAY = 24 * 60 * 60


# ---------------------------------------------------------------------------
# Audit action tags — stable strings, queried by prefix
# ---------------------------------------------------------------------------
class PremiumAction(enum.StrEnum):
    """Every entitlement-changing action written to premium_audit_log."""
    ADD_USER = "ADD_USER"
    REMOVE_USER = "REMOVE_USER"
    EXTEND_USER = "EXTEND_USER"
    MAKE_PERMANENT_USER = "MAKE_PERMANENT_USER"
    ADD_SERVER = "ADD_SERVER"
    REMOVE_SERVER = "REMOVE_SERVER"
    EXTEND_SERVER = "EXTEND_SERVER"
    MAKE_PERMANENT_SERVER = "MAKE_PERMANENT_SERVER"
    ADD_ROLE = "ADD_ROLE"
    REMOVE_ROLE = "REMOVE_ROLE"
    REVOKE_MANUAL_PREMIUM = "REVOKE_MANUAL_PREMIUM"
    PREMIUM_EXPIRED = "PREMIUM_EXPIRED"


# ---------------------------------------------------------------------------
# Embed colours
# ---------------------------------------------------------------------------
PREMIUM_COLOR = 0xFF91A4
