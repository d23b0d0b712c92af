"""
Security tests for the authentication API.

Tests cover:
- Password strength validation (strong passwords, weak passwords, missing complexity)
- Session cookie flags and bearer fallback
- Sign-in failures that do not reveal which credential was wrong
- Expired and revoked session handling
"""
import pytest

from tests.conftest import STRONG_PASSWORD, bearer, expire_session, signup_via_api


@pytest.mark.asyncio
async def test_strong_password_success(client):
    """
    Test Strong Password Success: a signup with a 12+ character password
    meeting every complexity rule succeeds and sets an httpOnly cookie.
    """
    response = await client.post(
        "/api/auth/signup",
        json={"email": "test_strong@example.com", "password": STRONG_PASSWORD, "name": "Strong"},
    )

    assert response.status_code == 200
    response_data = response.json()
    assert response_data["ok"] is True
    assert response_data["email"] == "test_strong@example.com"
    assert response_data["name"] == "Strong"
    assert "user_id" in response_data
    assert response_data["token"]

    set_cookie = response.headers["set-cookie"].lower()
    assert "auth_token=" in set_cookie
    assert "httponly" in set_cookie
    assert "secure" in set_cookie


@pytest.mark.asyncio
async def test_weak_password_rejection_min_length(client):
    response = await client.post(
        "/api/auth/signup",
        json={"email": "test_short@example.com", "password": "ShortPass1!"},
    )

    assert response.status_code == 400
    assert "12 characters" in response.json()["detail"]


@pytest.mark.asyncio
@pytest.mark.parametrize("password,missing_type", [
    ("lowercasepass123!", "uppercase"),
    ("NOLOWERCASE123!", "lowercase"),
    ("NoDigitsSpecial!", "digit"),
    ("NoSpecialChars123", "special"),
])
async def test_weak_password_rejection_missing_complexity(client, password, missing_type):
    response = await client.post(
        "/api/auth/signup",
        json={"email": f"test_{missing_type}@example.com", "password": password},
    )

    assert response.status_code == 400, f"Password '{password}' should be rejected for missing {missing_type}"
    assert missing_type in response.json()["detail"].lower()


@pytest.mark.asyncio
async def test_duplicate_signup_conflict(client):
    await signup_via_api(client, "twice@example.com")
    response = await client.post(
        "/api/auth/signup",
        json={"email": "Twice@Example.com", "password": STRONG_PASSWORD},
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_login_failures_are_indistinguishable(client):
    await signup_via_api(client, "known@example.com")

    wrong_password = await client.post(
        "/api/auth/login", json={"email": "known@example.com", "password": "WrongPass123!"}
    )
    unknown_email = await client.post(
        "/api/auth/login", json={"email": "unknown@example.com", "password": STRONG_PASSWORD}
    )

    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json()


@pytest.mark.asyncio
async def test_login_then_me(client):
    await signup_via_api(client, "me@example.com", name="Me")

    login = await client.post("/api/auth/login", json={"email": "ME@example.com", "password": STRONG_PASSWORD})
    assert login.status_code == 200
    token = login.json()["token"]
    client.cookies.clear()

    me = await client.get("/api/auth/me", headers=bearer(token))
    assert me.status_code == 200
    body = me.json()
    assert body["email"] == "me@example.com"
    assert body["name"] == "Me"
    assert body["subscription_status"] == "none"
    assert body["is_subscribed"] is False


@pytest.mark.asyncio
async def test_cookie_token_takes_precedence_over_header(client):
    first = await signup_via_api(client, "cookie@example.com")
    await signup_via_api(client, "header@example.com")

    response = await client.get(
        "/api/auth/me",
        headers={"Cookie": f"auth_token={first}", "Authorization": "Bearer not-a-real-token"},
    )
    assert response.status_code == 200
    assert response.json()["email"] == "cookie@example.com"


@pytest.mark.asyncio
async def test_me_without_token(client):
    response = await client.get("/api/auth/me")
    assert response.status_code == 401

    response = await client.get("/api/auth/me", headers={"Authorization": "Basic abc"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_authentication_failure_expired_token(client, session_factory):
    """
    Test Authentication Failure (Expired Token): a protected endpoint returns
    HTTP 401 once the session's expiry has passed.
    """
    token = await signup_via_api(client, "test_expired@example.com")

    async with session_factory() as db:
        await expire_session(db, token)

    response = await client.get("/api/auth/me", headers=bearer(token))
    assert response.status_code == 401

    session_check = await client.get("/api/auth/session", headers=bearer(token))
    assert session_check.status_code == 200
    assert session_check.json()["valid"] is False


@pytest.mark.asyncio
async def test_logout_revokes_token(client):
    token = await signup_via_api(client, "logout@example.com")

    assert (await client.get("/api/auth/session", headers=bearer(token))).json()["valid"] is True

    response = await client.post("/api/auth/logout", headers=bearer(token))
    assert response.status_code == 200
    assert "auth_token=" in response.headers["set-cookie"]

    assert (await client.get("/api/auth/me", headers=bearer(token))).status_code == 401

    # Logging out again is harmless
    again = await client.post("/api/auth/logout", headers=bearer(token))
    assert again.status_code == 200


@pytest.mark.asyncio
async def test_logout_keeps_other_sessions(client):
    first = await signup_via_api(client, "multi@example.com")
    login = await client.post("/api/auth/login", json={"email": "multi@example.com", "password": STRONG_PASSWORD})
    second = login.json()["token"]
    client.cookies.clear()

    await client.post("/api/auth/logout", headers=bearer(first))

    assert (await client.get("/api/auth/me", headers=bearer(first))).status_code == 401
    assert (await client.get("/api/auth/me", headers=bearer(second))).status_code == 200


@pytest.mark.asyncio
async def test_profile_update_conflict(client):
    token = await signup_via_api(client, "profile@example.com")
    await signup_via_api(client, "taken@example.com")

    renamed = await client.patch("/api/auth/profile", headers=bearer(token), json={"name": "New Name"})
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "New Name"

    conflict = await client.patch("/api/auth/profile", headers=bearer(token), json={"email": "taken@example.com"})
    assert conflict.status_code == 409

    unauthenticated = await client.patch("/api/auth/profile", json={"name": "x"})
    assert unauthenticated.status_code == 401
