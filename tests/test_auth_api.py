"""Auth API tests: registration, sign-in, sessions.

Learn: Tests cover:
1. User registration + duplicate prevention (case-insensitive)
2. Login → JWT tokens, with one uniform failure for every bad credential
3. Third-party sign-in via a signed assertion
4. Token refresh
5. Protected /me endpoint reading claims straight off the token
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from expensetracker.auth.jwt import create_access_token
from expensetracker.config import settings


def _assertion(**claims) -> str:
    payload = {
        "provider": "google",
        "sub": "google-sub-1",
        "email": "someone@example.com",
        "name": "Some One",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        **claims,
    }
    return jwt.encode(payload, settings.provider_assertion_secret, algorithm="HS256")


async def _register(client, email, password="password_123", name="Test User"):
    r = await client.post(
        "/api/v1/auth/register",
        json={"email": email, "name": name, "password": password},
    )
    assert r.status_code == 201, r.text
    return r.json()


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_register_user(unauthenticated_client):
    """Register a new user account. The hash never leaves the server."""
    email = f"test-{uuid.uuid4().hex[:8]}@example.com"
    user = await _register(unauthenticated_client, email)
    assert user["email"] == email
    assert user["name"] == "Test User"
    assert user["auth_method"] == "credentials"
    assert "id" in user
    assert "password_hash" not in user
    assert "password" not in user


@pytest.mark.asyncio
async def test_register_duplicate_email(unauthenticated_client):
    """Can't register with the same email twice, in any letter case."""
    await _register(unauthenticated_client, "dup@example.com")

    r = await unauthenticated_client.post(
        "/api/v1/auth/register",
        json={"email": "  DUP@Example.com ", "name": "User 2", "password": "password_123"},
    )
    assert r.status_code == 409
    assert r.json() == {
        "detail": "User with this email already exists",
        "code": "duplicate_email",
    }


@pytest.mark.asyncio
async def test_register_short_password(unauthenticated_client):
    """Password must be at least 6 characters."""
    r = await unauthenticated_client.post(
        "/api/v1/auth/register",
        json={"email": "short@example.com", "name": "Short", "password": "abc"},
    )
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_input"


@pytest.mark.asyncio
async def test_register_does_not_sign_in(unauthenticated_client):
    user = await _register(unauthenticated_client, "quiet@example.com")
    assert "access_token" not in user


# ═══════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_success(unauthenticated_client):
    """Login with valid credentials returns tokens."""
    await _register(unauthenticated_client, "login@example.com")

    r = await unauthenticated_client.post(
        "/api/v1/auth/login",
        json={"email": "Login@Example.com", "password": "password_123"},
    )
    assert r.status_code == 200
    data = r.json()
    assert data["token_type"] == "bearer"
    claims = jwt.decode(
        data["access_token"], settings.jwt_secret, algorithms=[settings.jwt_algorithm]
    )
    assert claims["type"] == "access"
    assert claims["email"] == "login@example.com"
    assert claims["name"] == "Test User"
    assert "password_hash" not in claims


@pytest.mark.asyncio
async def test_wrong_password_and_unknown_email_look_identical(unauthenticated_client):
    """Both failures give the same status, kind, and message."""
    await _register(unauthenticated_client, "exists@example.com")

    wrong_pw = await unauthenticated_client.post(
        "/api/v1/auth/login",
        json={"email": "exists@example.com", "password": "not-the-password"},
    )
    unknown = await unauthenticated_client.post(
        "/api/v1/auth/login",
        json={"email": "nobody@example.com", "password": "whatever_123"},
    )
    assert wrong_pw.status_code == unknown.status_code == 401
    assert wrong_pw.json() == unknown.json() == {
        "detail": "Invalid credentials",
        "code": "invalid_credentials",
    }


@pytest.mark.asyncio
async def test_login_third_party_only_user_with_password_fails(unauthenticated_client):
    """A user created through a provider has no hash; password login is refused."""
    r = await unauthenticated_client.post(
        "/api/v1/auth/oauth", json={"assertion": _assertion(email="social@example.com")}
    )
    assert r.status_code == 200

    r = await unauthenticated_client.post(
        "/api/v1/auth/login",
        json={"email": "social@example.com", "password": "anything_123"},
    )
    assert r.status_code == 401
    assert r.json()["code"] == "invalid_credentials"


# ═══════════════════════════════════════════════════════════
# Third-party sign-in
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_oauth_links_existing_password_account(unauthenticated_client):
    """Same email → same identity, and the password still works."""
    user = await _register(unauthenticated_client, "link@example.com")

    r = await unauthenticated_client.post(
        "/api/v1/auth/oauth",
        json={"assertion": _assertion(email="LINK@example.com", sub="g-42")},
    )
    assert r.status_code == 200
    oauth_claims = jwt.decode(
        r.json()["access_token"], settings.jwt_secret, algorithms=[settings.jwt_algorithm]
    )
    assert oauth_claims["sub"] == user["id"]

    r = await unauthenticated_client.post(
        "/api/v1/auth/login",
        json={"email": "link@example.com", "password": "password_123"},
    )
    assert r.status_code == 200
    pw_claims = jwt.decode(
        r.json()["access_token"], settings.jwt_secret, algorithms=[settings.jwt_algorithm]
    )
    assert pw_claims["sub"] == user["id"]


@pytest.mark.asyncio
async def test_oauth_bad_assertion_is_invalid_credentials(unauthenticated_client):
    forged = jwt.encode(
        {"provider": "google", "sub": "x", "email": "x@example.com",
         "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        "not-the-secret",
        algorithm="HS256",
    )
    r = await unauthenticated_client.post("/api/v1/auth/oauth", json={"assertion": forged})
    assert r.status_code == 401
    assert r.json()["code"] == "invalid_credentials"


@pytest.mark.asyncio
async def test_oauth_expired_assertion_rejected(unauthenticated_client):
    stale = _assertion(exp=datetime.now(timezone.utc) - timedelta(minutes=1))
    r = await unauthenticated_client.post("/api/v1/auth/oauth", json={"assertion": stale})
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Refresh
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_refresh_token(unauthenticated_client):
    """Refresh token → new token pair carrying the same identity claims."""
    await _register(unauthenticated_client, "refresh@example.com", name="Rae")
    r = await unauthenticated_client.post(
        "/api/v1/auth/login",
        json={"email": "refresh@example.com", "password": "password_123"},
    )
    tokens = r.json()

    r = await unauthenticated_client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert r.status_code == 200
    claims = jwt.decode(
        r.json()["access_token"], settings.jwt_secret, algorithms=[settings.jwt_algorithm]
    )
    assert claims["name"] == "Rae"
    assert claims["email"] == "refresh@example.com"


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(unauthenticated_client):
    """Can't use an access token as a refresh token."""
    token = create_access_token(str(uuid.uuid4()), email="a@example.com")
    r = await unauthenticated_client.post("/api/v1/auth/refresh", json={"refresh_token": token})
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Current user
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_with_token(unauthenticated_client):
    """GET /auth/me echoes the token's identity claims."""
    user = await _register(unauthenticated_client, "me@example.com", name="Me Myself")
    r = await unauthenticated_client.post(
        "/api/v1/auth/login",
        json={"email": "me@example.com", "password": "password_123"},
    )
    token = r.json()["access_token"]

    r = await unauthenticated_client.get(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"}
    )
    assert r.status_code == 200
    assert r.json() == {
        "id": user["id"],
        "email": "me@example.com",
        "name": "Me Myself",
        "image": None,
    }


@pytest.mark.asyncio
async def test_me_without_token(unauthenticated_client):
    r = await unauthenticated_client.get("/api/v1/auth/me")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_me_with_garbage_token(unauthenticated_client):
    r = await unauthenticated_client.get(
        "/api/v1/auth/me", headers={"Authorization": "Bearer not.a.jwt"}
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_token_without_subject_is_unauthenticated(unauthenticated_client):
    token = jwt.encode(
        {"type": "access", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    r = await unauthenticated_client.get(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"}
    )
    assert r.status_code == 401
