"""
veebee.api.deps — FastAPI dependency injection
===============================================

Callers authenticate with their own Discord token: the ``Authorization``
header is forwarded verbatim to Discord's ``GET /users/@me`` and the request
proceeds as that user.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated

import httpx
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import Engine

from veebee.config import VeebeeConfig, load_config
from veebee.database.engine import create_db_engine

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"


@dataclass(frozen=True, slots=True)
class DiscordUser:
    """The caller, as reported by Discord."""

    id: str
    username: str
    discriminator: str
    avatar: str | None = None


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> VeebeeConfig:
    return load_config()


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.AsyncHTTPTransport(retries=1)
    async with httpx.AsyncClient(timeout=10, transport=transport) as client:
        yield client


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    client: httpx.AsyncClient = Depends(get_http_client),
) -> DiscordUser:
    """Validate the caller's Discord token.  401 if rejected, 500 if Discord is unreachable."""
    if not authorization:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "No authorization token provided")
    try:
        resp = await client.get(f"{DISCORD_API}/users/@me", headers={"Authorization": authorization})
    except httpx.HTTPError:
        logger.exception("Error verifying Discord token")
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to verify Discord token")

    if resp.status_code != 200:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid Discord token")

    try:
        data = resp.json()
    except ValueError:
        data = None
    if (
        not isinstance(data, dict)
        or not isinstance(data.get("id"), str)
        or not isinstance(data.get("username"), str)
        or not isinstance(data.get("discriminator"), str)
    ):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid Discord user data")

    avatar = data.get("avatar")
    return DiscordUser(
        id=data["id"],
        username=data["username"],
        discriminator=data["discriminator"],
        avatar=avatar if isinstance(avatar, str) else None,
    )
