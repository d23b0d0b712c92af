"""
Session Service - sign-up, sign-in, sign-out and session validation
"""
import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import (
    dummy_verify,
    generate_session_token,
    hash_password,
    normalize_email,
    session_expiry,
    validate_email,
    validate_password_strength,
    verify_password,
)
from crud.session import SessionRepository
from crud.user import UserRepository
from database_models import User
from services.subscription_ledger import status_for_user
from utils.errors import ConflictError, InvalidCredentialError, UnauthorizedError

logger = logging.getLogger(__name__)


class SessionService:
    """
    Issues, validates and revokes opaque session tokens.

    A user may hold any number of sessions at once; signing in never
    invalidates the others.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the session service.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db
        self.user_repo = UserRepository(db)
        self.session_repo = SessionRepository(db)

    async def _issue_session(self, user: User) -> str:
        token = generate_session_token()
        await self.session_repo.create_session(user.id, token, session_expiry())
        return token

    async def sign_up(self, email: str, password: str, name: Optional[str] = None) -> Tuple[str, User]:
        """
        Create an account and its first session.

        Raises:
            ValueError: If the email format or password strength is invalid
            ConflictError: If the email is already registered
        """
        email = normalize_email(email)
        if not validate_email(email):
            raise ValueError("Invalid email format")
        validate_password_strength(password)

        if await self.user_repo.email_taken(email):
            raise ConflictError("Email already registered")

        try:
            user = await self.user_repo.create_user({
                "email": email,
                "hashed_password": hash_password(password),
                "name": name,
            })
        except IntegrityError:
            # Lost a race with a concurrent sign-up for the same email
            await self.db.rollback()
            raise ConflictError("Email already registered")
        token = await self._issue_session(user)
        await self.db.commit()

        logger.info(f"New account created: user {user.id}")
        return token, user

    async def sign_in(self, email: str, password: str) -> Tuple[str, User]:
        """
        Open a new session for an existing account.

        Raises:
            InvalidCredentialError: Unknown email or wrong password (indistinguishable)
        """
        user = await self.user_repo.get_user_by_email(normalize_email(email))
        if not user:
            dummy_verify(password or "")
            logger.info("Sign-in failed")
            raise InvalidCredentialError()

        if not verify_password(password or "", user.hashed_password):
            logger.info("Sign-in failed")
            raise InvalidCredentialError()

        token = await self._issue_session(user)
        await self.db.commit()
        return token, user

    async def sign_out(self, token: Optional[str]) -> None:
        """Delete the session for a token. Unknown tokens are ignored."""
        if not token:
            return
        deleted = await self.session_repo.delete_by_token(token)
        await self.db.commit()
        if deleted:
            logger.info("Session signed out")

    async def validate(self, token: Optional[str]) -> Optional[User]:
        """
        Resolve a token to its user.

        Returns None for unknown tokens and for sessions whose expiry has
        passed. Expired rows are left in place.
        """
        if not token:
            return None
        session = await self.session_repo.get_by_token(token)
        if not session or session.expires_at < datetime.utcnow():
            return None
        return await self.user_repo.get_user_by_id(session.user_id)

    async def validate_session(self, token: Optional[str]) -> dict:
        user = await self.validate(token)
        if not user:
            return {"valid": False, "user_id": None}
        return {"valid": True, "user_id": user.id}

    async def require_user(self, token: Optional[str]) -> User:
        """
        Raises:
            UnauthorizedError: If the token does not resolve to a live session
        """
        user = await self.validate(token)
        if not user:
            raise UnauthorizedError()
        return user

    async def update_profile(self, token: Optional[str], name: Optional[str] = None,
                             email: Optional[str] = None) -> User:
        """
        Change the caller's display name and/or email.

        Raises:
            UnauthorizedError: If the session is missing or expired
            ValueError: If the new email is malformed
            ConflictError: If the new email belongs to another user
        """
        user = await self.require_user(token)

        updates = {}
        if name is not None:
            updates["name"] = name

        if email is not None:
            email = normalize_email(email)
            if not validate_email(email):
                raise ValueError("Invalid email format")
            if await self.user_repo.email_taken(email, exclude_user_id=user.id):
                raise ConflictError("Email is already in use")
            updates["email"] = email

        if updates:
            try:
                user = await self.user_repo.update_user(user, updates)
            except IntegrityError:
                await self.db.rollback()
                raise ConflictError("Email is already in use")
            await self.db.commit()
        return user

    async def get_current_user_with_subscription(self, token: Optional[str]) -> Optional[dict]:
        """Profile of the caller joined with its derived subscription state."""
        user = await self.validate(token)
        if not user:
            return None
        subscription = status_for_user(user)
        return {
            "user_id": str(user.id),
            "email": user.email,
            "name": user.name,
            "subscription_status": subscription.status,
            "subscription_expires_at": subscription.expires_at.isoformat() if subscription.expires_at else None,
            "is_subscribed": subscription.is_subscribed,
        }
