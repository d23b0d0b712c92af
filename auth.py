"""
Authentication routes and dependencies
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Header, Depends, Cookie
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from auth_utils import extract_bearer_token
from config import settings
from database import get_db
from database_models import User
from services.session_service import SessionService
from services.subscription_ledger import compute_is_subscribed
from utils.errors import ServiceError

logger = logging.getLogger(__name__)

# Create auth router
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])

AUTH_COOKIE = "auth_token"


# Request models
class SignupRequest(BaseModel):
    email: str
    password: str
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


def _user_payload(user: User) -> dict:
    return {
        "user_id": str(user.id),
        "email": user.email,
        "name": user.name,
    }


def _session_response(token: str, user: User) -> JSONResponse:
    """Return the token in the body and as an httpOnly cookie."""
    response = JSONResponse(
        content={
            "ok": True,
            "token": token,
            **_user_payload(user),
        }
    )
    response.set_cookie(
        key=AUTH_COOKIE,
        value=token,
        httponly=True,
        secure=True,
        samesite="Lax",
        max_age=settings.session_ttl_days * 24 * 60 * 60,
    )
    return response


def get_request_token(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Optional[str]:
    """
    Dependency returning the raw session token, if any.

    Authentication priority:
    1. auth_token cookie (httpOnly cookie set by login/signup)
    2. Authorization: Bearer header for API consumers
    """
    return extract_bearer_token(auth_token, authorization)


@auth_router.post("/signup")
async def signup(request: SignupRequest, db: AsyncSession = Depends(get_db)):
    """Create a new user account and sign it in"""
    try:
        token, user = await SessionService(db).sign_up(request.email, request.password, request.name)
        return _session_response(token, user)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Signup failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Signup failed")


@auth_router.post("/login")
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Sign in and get a session token"""
    try:
        token, user = await SessionService(db).sign_in(request.email, request.password)
        return _session_response(token, user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Login failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Login failed")


@auth_router.post("/logout")
async def logout(
    token: Optional[str] = Depends(get_request_token),
    db: AsyncSession = Depends(get_db)
):
    """Delete the caller's session and clear the cookie. Safe to repeat."""
    await SessionService(db).sign_out(token)

    response = JSONResponse(
        content={
            "ok": True,
            "message": "Logged out successfully"
        }
    )
    # Clear the auth_token cookie by setting max_age=0
    response.set_cookie(
        key=AUTH_COOKIE,
        value="",
        httponly=True,
        secure=True,
        samesite="Lax",
        max_age=0
    )
    return response


@auth_router.get("/me")
async def get_current_user_info(
    token: Optional[str] = Depends(get_request_token),
    db: AsyncSession = Depends(get_db)
):
    """Current user with subscription state"""
    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token")

    user_info = await SessionService(db).get_current_user_with_subscription(token)
    if not user_info:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    return {"ok": True, **user_info}


@auth_router.get("/session")
async def validate_session(
    token: Optional[str] = Depends(get_request_token),
    db: AsyncSession = Depends(get_db)
):
    """Lightweight session check; never fails, reports validity instead"""
    result = await SessionService(db).validate_session(token)
    return {
        "ok": True,
        "valid": result["valid"],
        "user_id": str(result["user_id"]) if result["user_id"] is not None else None,
    }


@auth_router.patch("/profile")
async def update_profile(
    request: ProfileUpdateRequest,
    token: Optional[str] = Depends(get_request_token),
    db: AsyncSession = Depends(get_db)
):
    """Update display name and/or email of the caller"""
    try:
        user = await SessionService(db).update_profile(token, name=request.name, email=request.email)
        return {"ok": True, **_user_payload(user)}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# Dependency for protected routes
async def get_current_user(
    token: Optional[str] = Depends(get_request_token),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Dependency function to get current authenticated user.

    Raises 401 if the token is missing, unknown or its session has expired.
    """
    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token")

    user = await SessionService(db).validate(token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    return user


async def require_subscription(user: User = Depends(get_current_user)) -> User:
    """
    Dependency for routes that need a paid plan (document writes and the like).
    Raises 402 when the caller is not currently subscribed.
    """
    if not compute_is_subscribed(user.subscription_status, user.subscription_expires_at):
        raise HTTPException(status_code=402, detail="An active subscription is required")
    return user
