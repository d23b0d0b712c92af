"""
Subscription Router - status reads for the post-checkout poll and the manual
activation fallback
"""

import logging
from typing import Optional
from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_db
from database_models import User
from services.manual_activation import ManualActivationService, build_manual_activation_limiter
from services.subscription_ledger import SubscriptionLedger
from utils.errors import ServiceError
from utils.rate_limit import TokenBucketLimiter
from utils.responses import success_response

logger = logging.getLogger(__name__)

subscription_router = APIRouter(prefix="/api/subscription", tags=["subscription"])

_manual_activation_limiter = build_manual_activation_limiter()


def get_manual_activation_limiter() -> TokenBucketLimiter:
    return _manual_activation_limiter


@subscription_router.get("/status")
async def get_subscription_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Current subscription state of the caller; polled after checkout"""
    try:
        status = await SubscriptionLedger(db).get_status(user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return success_response(status.model_dump(mode="json"))


@subscription_router.post("/manual-activate")
async def manual_activate(
    email: Optional[str] = Body(default=None, embed=True),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    limiter: TokenBucketLimiter = Depends(get_manual_activation_limiter),
):
    """
    Activate the caller's subscription when the provider webhook never
    arrived. Only the account owner may do this, a few times per hour.
    """
    try:
        status = await ManualActivationService(db, limiter).activate(user, email)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return success_response(status.model_dump(mode="json"), message="Subscription activated")
