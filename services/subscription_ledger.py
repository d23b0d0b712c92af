"""
Subscription Ledger - the only write path for a user's subscription state
"""
import enum
import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import (
    STATUS_ACTIVE,
    STATUS_NONE,
    STATUS_TRIALING,
    SUBSCRIPTION_STATUSES,
)
from crud.user import UserRepository
from utils.errors import UserNotFoundError

logger = logging.getLogger(__name__)

ACTIVE_LIKE_STATUSES = (STATUS_ACTIVE, STATUS_TRIALING)


class TransitionOutcome(str, enum.Enum):
    APPLIED = "applied"
    USER_NOT_FOUND = "user_not_found"
    STALE = "stale"


class SubscriptionStatus(BaseModel):
    status: str
    is_subscribed: bool
    expires_at: Optional[datetime] = None


def compute_is_subscribed(status: Optional[str], expires_at: Optional[datetime],
                          now: Optional[datetime] = None) -> bool:
    """
    The one derivation of "is this user subscribed".

    Every gating check goes through here so the rule cannot drift between
    callers.
    """
    if status not in ACTIVE_LIKE_STATUSES:
        return False
    if expires_at is None:
        return True
    now = now or datetime.utcnow()
    return expires_at > now


def status_for_user(user, now: Optional[datetime] = None) -> SubscriptionStatus:
    status = user.subscription_status or STATUS_NONE
    return SubscriptionStatus(
        status=status,
        is_subscribed=compute_is_subscribed(status, user.subscription_expires_at, now),
        expires_at=user.subscription_expires_at,
    )


class SubscriptionLedger:
    """
    Applies subscription transitions keyed by email.

    Writes are last-write-wins. When the caller knows when the provider
    produced the event (event_at) and the user already has a newer event
    applied, the transition is dropped as stale instead.
    """

    def __init__(self, db: AsyncSession, user_repo: Optional[UserRepository] = None):
        self.db = db
        self.user_repo = user_repo or UserRepository(db)

    async def apply_transition(
        self,
        email: str,
        status: str,
        customer_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        event_at: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """
        Overwrite the subscription fields of the user owning `email`.

        Only flushes; the caller owns the transaction.

        Raises:
            ValueError: If status is not a known subscription status
        """
        if status not in SUBSCRIPTION_STATUSES:
            raise ValueError(f"Unknown subscription status: {status}")

        user = await self.user_repo.get_user_by_email(email)
        if not user:
            logger.info(f"Subscription transition to {status} skipped: no user for {email}")
            return TransitionOutcome.USER_NOT_FOUND

        last_event_at = user.subscription_event_at
        if event_at is not None and last_event_at is not None and event_at < last_event_at:
            logger.warning(
                f"Stale subscription event for user {user.id}: event at {event_at.isoformat()} "
                f"is older than applied event at {last_event_at.isoformat()}; keeping {user.subscription_status}"
            )
            return TransitionOutcome.STALE

        updates = {"subscription_status": status}
        if customer_id is not None:
            updates["external_customer_id"] = customer_id
        if expires_at is not None:
            updates["subscription_expires_at"] = expires_at
        if event_at is not None:
            updates["subscription_event_at"] = event_at

        previous = user.subscription_status
        await self.user_repo.update_user(user, updates)
        logger.info(
            f"Subscription for user {user.id}: {previous} -> {status}"
            f" (expires {expires_at.isoformat() if expires_at else 'unchanged'})"
        )
        return TransitionOutcome.APPLIED

    async def get_status(self, user_id: int) -> SubscriptionStatus:
        """
        Read the current subscription state of a user.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        user = await self.user_repo.get_user_by_id(user_id)
        if not user:
            raise UserNotFoundError()
        return status_for_user(user)
