"""
Authentication utilities: Password hashing and session token management
"""

import re
import secrets
from datetime import datetime, timedelta
from passlib.context import CryptContext
from typing import Optional
from config import settings

# Password hashing context
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto"
)

# 32 random bytes, url-safe base64 encoded (43 chars)
TOKEN_BYTES = 32

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

# Verified against on unknown-email sign-ins so both failure paths cost the same
_DUMMY_HASH: Optional[str] = None


def hash_password(password: str) -> str:
    """Hash a password using argon2"""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash"""
    return pwd_context.verify(password, password_hash)


def dummy_verify(password: str) -> None:
    """Burn one verifier check for a sign-in attempt with no matching user."""
    global _DUMMY_HASH
    if _DUMMY_HASH is None:
        _DUMMY_HASH = hash_password(secrets.token_urlsafe(16))
    pwd_context.verify(password, _DUMMY_HASH)


def generate_session_token() -> str:
    """Create an opaque bearer token for a new session"""
    return secrets.token_urlsafe(TOKEN_BYTES)


def session_expiry(now: Optional[datetime] = None) -> datetime:
    """Expiry timestamp for a session created at `now`"""
    now = now or datetime.utcnow()
    return now + timedelta(days=settings.session_ttl_days)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_email(email: str) -> bool:
    """Validate email format"""
    return EMAIL_PATTERN.match(email or "") is not None


def validate_password_strength(password: str) -> None:
    """
    Validate password strength according to security requirements.

    Enforces:
    - Minimum length: 12 characters
    - At least one uppercase letter (A-Z)
    - At least one lowercase letter (a-z)
    - At least one digit (0-9)
    - At least one special character (!@#$%^&*(),.?":{}|<>])

    Raises:
        ValueError: If password does not meet strength requirements
    """
    if not password:
        raise ValueError("Password cannot be empty")

    if len(password) < 12:
        raise ValueError("Password must be at least 12 characters long")

    if not re.search(r'[A-Z]', password):
        raise ValueError("Password must contain at least one uppercase letter (A-Z)")

    if not re.search(r'[a-z]', password):
        raise ValueError("Password must contain at least one lowercase letter (a-z)")

    if not re.search(r'[0-9]', password):
        raise ValueError("Password must contain at least one digit (0-9)")

    if not re.search(r'[!@#$%&*(),.?":{}|<>\[\]^]', password):
        raise ValueError("Password must contain at least one special character")


def extract_bearer_token(auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """
    Pick the session token from the request.

    The httpOnly cookie wins; the Authorization header is the fallback for
    API consumers.
    """
    if auth_token:
        return auth_token
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
        return token or None
    return None
