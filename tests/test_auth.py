"""
Unit tests for UserRepository / SessionRepository operations
"""
from datetime import datetime, timedelta

import pytest
from crud.session import SessionRepository
from crud.user import UserRepository
from auth_utils import hash_password, verify_password, generate_session_token


@pytest.mark.asyncio
async def test_create_and_get_user(test_db):
    """
    Test creating a new user and retrieving it by email.

    This test verifies:
    - User creation via UserRepository.create_user
    - Case-insensitive retrieval via UserRepository.get_user_by_email
    - New accounts start with subscription status "none"
    """
    user_repo = UserRepository(test_db)

    hashed_pwd = hash_password("test_password_123")
    created_user = await user_repo.create_user({
        "email": "Test@Example.com",
        "hashed_password": hashed_pwd,
        "name": "Tess",
    })
    await test_db.commit()

    assert created_user.id is not None
    assert created_user.email == "test@example.com"
    assert created_user.hashed_password == hashed_pwd
    assert created_user.subscription_status == "none"
    assert created_user.subscription_expires_at is None
    assert created_user.created_at is not None

    retrieved_user = await user_repo.get_user_by_email("TEST@example.COM")
    assert retrieved_user is not None
    assert retrieved_user.id == created_user.id


@pytest.mark.asyncio
async def test_login_verification(test_db):
    """
    Test password verification for login.

    The stored verifier is never the plaintext and only the original
    password verifies against it.
    """
    user_repo = UserRepository(test_db)

    test_password = "secure_password_456"
    await user_repo.create_user({
        "email": "login_test@example.com",
        "hashed_password": hash_password(test_password),
    })
    await test_db.commit()

    retrieved_user = await user_repo.get_user_by_email("login_test@example.com")
    assert retrieved_user is not None
    assert retrieved_user.hashed_password != test_password
    assert retrieved_user.hashed_password.startswith("$argon2")

    assert verify_password(test_password, retrieved_user.hashed_password) is True
    assert verify_password("wrong_password", retrieved_user.hashed_password) is False


def test_password_hashes_are_salted():
    assert hash_password("same-password") != hash_password("same-password")


@pytest.mark.asyncio
async def test_session_rows_lookup_and_delete(test_db):
    user_repo = UserRepository(test_db)
    session_repo = SessionRepository(test_db)
    user = await user_repo.create_user({"email": "rows@example.com", "hashed_password": "x"})

    token = generate_session_token()
    await session_repo.create_session(user.id, token, datetime.utcnow() + timedelta(days=1))
    await test_db.commit()

    found = await session_repo.get_by_token(token)
    assert found is not None
    assert found.user_id == user.id

    assert await session_repo.delete_by_token(token) == 1
    assert await session_repo.delete_by_token(token) == 0
    assert await session_repo.get_by_token(token) is None


def test_session_tokens_are_unique_and_opaque():
    tokens = {generate_session_token() for _ in range(200)}
    assert len(tokens) == 200
    assert all(len(token) >= 43 for token in tokens)


@pytest.mark.asyncio
async def test_email_taken_and_customer_lookup(test_db):
    user_repo = UserRepository(test_db)
    user = await user_repo.create_user({"email": "owner@example.com", "hashed_password": "x"})
    await user_repo.update_user(user, {"external_customer_id": "cus_9"})

    assert await user_repo.email_taken("OWNER@example.com") is True
    assert await user_repo.email_taken("owner@example.com", exclude_user_id=user.id) is False
    assert await user_repo.email_taken("free@example.com") is False

    assert (await user_repo.get_user_by_customer_id("cus_9")).id == user.id
    assert await user_repo.get_user_by_customer_id("cus_missing") is None
