"""
UserRepository for database operations on the User model
"""

from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from config.settings import STATUS_NONE
from database_models import User


def _normalize(email: str) -> str:
    return email.strip().lower()


class UserRepository:
    """
    Repository class for User database operations.

    Emails are stored and compared lower-cased, so every lookup here is
    case-insensitive. Writes flush but never commit.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == _normalize(email))
        )
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: int) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def get_user_by_customer_id(self, customer_id: str) -> Optional[User]:
        """Resolve a payment-provider customer id recorded by an earlier event."""
        result = await self.db.execute(
            select(User).where(User.external_customer_id == customer_id).order_by(User.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def email_taken(self, email: str, exclude_user_id: Optional[int] = None) -> bool:
        query = select(User.id).where(User.email == _normalize(email))
        if exclude_user_id is not None:
            query = query.where(User.id != exclude_user_id)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none() is not None

    async def create_user(self, user_data: dict) -> User:
        """
        Create a new account.

        Args:
            user_data: "email" and "hashed_password" are required, "name" is optional

        Returns:
            The new User with subscription status "none"
        """
        user = User(
            email=_normalize(user_data["email"]),
            hashed_password=user_data["hashed_password"],
            name=user_data.get("name"),
            subscription_status=STATUS_NONE,
        )
        self.db.add(user)
        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def update_user(self, user: User, updates: dict[str, Any]) -> User:
        for field, value in updates.items():
            setattr(user, field, value)
        await self.db.flush()
        await self.db.refresh(user)
        return user
