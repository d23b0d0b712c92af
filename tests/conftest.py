"""
Pytest configuration and fixtures for testing
"""
import os
from datetime import datetime, timedelta

# Must be set before the application modules read their settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("POLAR_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "0")
os.environ.pop("REDIS_URL", None)
os.environ.pop("RENDER", None)
os.environ.pop("ENV", None)

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.pool import StaticPool
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from database import Base, get_db

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_WEBHOOK_SECRET = os.environ["POLAR_WEBHOOK_SECRET"]
STRONG_PASSWORD = "StrongPass123!"


@pytest.fixture
async def test_engine():
    """Fresh in-memory database per test; StaticPool keeps the single connection alive."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
async def test_db(session_factory):
    """
    Fixture that provides an isolated AsyncSession for each test.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
async def client(session_factory):
    """
    HTTP client bound to the app, with get_db pointed at the test database
    and a fresh manual-activation limiter.
    """
    from main import app
    from routers.subscription_router import get_manual_activation_limiter
    from services.manual_activation import build_manual_activation_limiter

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    limiter = build_manual_activation_limiter()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_manual_activation_limiter] = lambda: limiter

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()


async def signup_via_api(client, email: str, password: str = STRONG_PASSWORD, name: str = None) -> str:
    """Sign up through the API and return the bearer token (cookies are dropped)."""
    response = await client.post(
        "/api/auth/signup",
        json={"email": email, "password": password, "name": name},
    )
    assert response.status_code == 200, response.text
    client.cookies.clear()
    return response.json()["token"]


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def expire_session(db, token: str, expires_at: datetime = None) -> None:
    """Move a session's expiry into the past (or to expires_at) and commit."""
    from database_models import Session

    session = (await db.execute(select(Session).where(Session.token == token))).scalar_one()
    session.expires_at = expires_at or datetime.utcnow() - timedelta(seconds=1)
    await db.commit()


async def sessions_for_user(db, user_id: int) -> list:
    from database_models import Session

    result = await db.execute(select(Session).where(Session.user_id == user_id).order_by(Session.id))
    return list(result.scalars().all())
