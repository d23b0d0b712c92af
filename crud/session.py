"""
SessionRepository for database operations on Session model
"""

from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from database_models import Session


class SessionRepository:
    """
    Repository class for Session database operations.
    Lookups return rows regardless of expiry; callers decide what expired means.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_session(self, user_id: int, token: str, expires_at: datetime) -> Session:
        session = Session(user_id=user_id, token=token, expires_at=expires_at)
        self.db.add(session)
        await self.db.flush()
        await self.db.refresh(session)
        return session

    async def get_by_token(self, token: str) -> Optional[Session]:
        result = await self.db.execute(
            select(Session).where(Session.token == token)
        )
        return result.scalar_one_or_none()

    async def delete_by_token(self, token: str) -> int:
        """
        Delete the session row for a token.

        Returns:
            Number of rows deleted (0 when the token was unknown)
        """
        result = await self.db.execute(
            delete(Session).where(Session.token == token)
        )
        await self.db.flush()
        return result.rowcount or 0
