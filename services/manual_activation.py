"""
Manual Activation - user-invoked fallback when no webhook arrived in time
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import normalize_email
from config.settings import settings, STATUS_ACTIVE
from database_models import User
from services.subscription_ledger import SubscriptionLedger, SubscriptionStatus, TransitionOutcome
from utils.errors import ForbiddenError, RateLimitedError, UserNotFoundError
from utils.rate_limit import TokenBucketLimiter

logger = logging.getLogger(__name__)

SYNC_FAILED_MESSAGE = "Couldn't sync your subscription, please contact support"


def build_manual_activation_limiter() -> TokenBucketLimiter:
    return TokenBucketLimiter(
        settings.manual_activation_per_hour,
        3600.0,
        namespace="manual_activation",
    )


class ManualActivationService:
    """
    Applies a synthetic "subscription active" transition for the caller.

    There is no proof of payment here, so the operation is restricted to the
    authenticated owner of the account, rate limited per user, and logged as
    a security event every time it is invoked.
    """

    def __init__(self, db: AsyncSession, limiter: TokenBucketLimiter):
        self.db = db
        self.ledger = SubscriptionLedger(db)
        self.limiter = limiter

    async def activate(self, user: User, email: Optional[str] = None) -> SubscriptionStatus:
        """
        Activate the caller's subscription for settings.default_subscription_days.

        Args:
            user: Authenticated caller
            email: Optional explicit target; must be the caller's own email

        Raises:
            ForbiddenError: If disabled, or the target is another account
            RateLimitedError: If the caller exceeded the hourly allowance
            UserNotFoundError: If the account vanished before the write
        """
        target = normalize_email(email) if email else user.email
        logger.warning(f"SECURITY: manual subscription activation requested by user {user.id} for {target}")

        if not settings.manual_activation_enabled:
            raise ForbiddenError("Manual activation is disabled")

        if target != user.email:
            logger.warning(f"SECURITY: user {user.id} tried to manually activate another account ({target})")
            raise ForbiddenError("You can only activate your own subscription")

        if not await self.limiter.allow(f"user:{user.id}"):
            logger.warning(f"SECURITY: manual activation rate limit hit for user {user.id}")
            raise RateLimitedError("Too many activation attempts. Please try again later.")

        expires_at = datetime.utcnow() + timedelta(days=settings.default_subscription_days)
        outcome = await self.ledger.apply_transition(target, STATUS_ACTIVE, expires_at=expires_at)
        if outcome is TransitionOutcome.USER_NOT_FOUND:
            raise UserNotFoundError(SYNC_FAILED_MESSAGE)

        await self.db.commit()
        logger.warning(f"SECURITY: manual activation applied for user {user.id} until {expires_at.isoformat()}")
        return await self.ledger.get_status(user.id)
