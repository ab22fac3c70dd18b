"""
veebee.api.routes.premium — Subscription endpoints
===================================================

- ``POST   /api/premium/subscribe``          record a payment, grant premium
- ``GET    /api/premium/status/{user_id}``   read-only entitlement check
- ``DELETE /api/premium/cancel/{user_id}``   revoke premium, close subscriptions

All three require a valid Discord token (see :func:`get_current_user`).
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from veebee.api.deps import DiscordUser, get_current_user, get_engine
from veebee.constants import API_CANCEL_ACTOR, API_SUBSCRIPTION_ACTOR
from veebee.database.engine import run_db
from veebee.services.premium_service import (
    add_premium_user,
    close_subscriptions,
    get_user_premium_info,
    record_subscription,
    remove_premium_user,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/premium", tags=["premium"])


class SubscribeRequest(BaseModel):
    user_id: int = Field(gt=0)
    duration_days: int = Field(gt=0, le=3650)
    payment_id: str = Field(min_length=1, max_length=128)
    amount: float = Field(default=0.0, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=8)


class SubscribeResponse(BaseModel):
    success: bool = True
    message: str
    expires_at: datetime


class StatusResponse(BaseModel):
    success: bool = True
    is_premium: bool
    expires_at: datetime | None = None
    is_permanent: bool = False


class CancelResponse(BaseModel):
    success: bool = True
    message: str
    subscriptions_closed: int = 0


@router.post("/subscribe", response_model=SubscribeResponse)
async def subscribe(
    body: SubscribeRequest,
    engine: Engine = Depends(get_engine),
    _user: DiscordUser = Depends(get_current_user),
):
    recorded = await run_db(
        record_subscription, engine,
        payment_id=body.payment_id,
        user_id=body.user_id,
        duration_days=body.duration_days,
        amount=body.amount,
        currency=body.currency,
    )
    if not recorded:
        raise HTTPException(409, "Payment already processed")

    outcome = await run_db(add_premium_user, engine, body.user_id, body.duration_days, API_SUBSCRIPTION_ACTOR)
    logger.info("Subscription %s activated premium for user %s", body.payment_id, body.user_id)
    return SubscribeResponse(message="Premium subscription activated", expires_at=outcome.result)


@router.get("/status/{user_id}", response_model=StatusResponse)
async def premium_status(
    user_id: int,
    engine: Engine = Depends(get_engine),
    _user: DiscordUser = Depends(get_current_user),
):
    info = await run_db(get_user_premium_info, engine, user_id)
    if info is None:
        return StatusResponse(is_premium=False)
    return StatusResponse(
        is_premium=info.active,
        expires_at=info.expires_at,
        is_permanent=info.is_permanent,
    )


@router.delete("/cancel/{user_id}", response_model=CancelResponse)
async def cancel(
    user_id: int,
    engine: Engine = Depends(get_engine),
    _user: DiscordUser = Depends(get_current_user),
):
    await run_db(remove_premium_user, engine, user_id, API_CANCEL_ACTOR)
    closed = await run_db(close_subscriptions, engine, user_id)
    return CancelResponse(message="Premium subscription cancelled", subscriptions_closed=closed)
