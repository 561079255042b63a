"""JWT session tokens and third-party sign-in assertions.

Learn: JWT (JSON Web Token) provides stateless sessions.
- Access token: short-lived (60min), sent as a Bearer header
- Refresh token: long-lived (30 days), exchanged for a new pair

The subject claim is the user's stable id. Display name, email and image
ride along so common reads need no database round trip. The password
hash never goes into a token.

Third-party sign-in arrives as an assertion JWT minted by the trusted
sign-in front end (it completed the OAuth dance with the provider) and
signed with a separate secret.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from expensetracker.config import settings

class TokenError(Exception):
    """Raised when token creation/verification fails."""


def _profile(
    name: Optional[str], email: Optional[str], image: Optional[str]
) -> dict:
    claims = {"name": name, "email": email, "picture": image}
    return {k: v for k, v in claims.items() if v is not None}


def create_access_token(
    user_id: str,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
    image: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    expires = now + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": user_id,
        "type": "access",
        "exp": expires,
        "iat": now,
        **_profile(name, email, image),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_refresh_token(
    user_id: str,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
    image: Optional[str] = None,
    expires_days: Optional[int] = None,
) -> str:
    """Create a JWT refresh token."""
    now = datetime.now(timezone.utc)
    expires = now + timedelta(
        days=expires_days or settings.refresh_token_expire_days
    )
    payload = {
        "sub": user_id,
        "type": "refresh",
        "exp": expires,
        "iat": now,
        **_profile(name, email, image),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def issue_session(user) -> dict:
    """Mint an access/refresh pair for a freshly resolved user."""
    profile = {"name": user.name, "email": user.email, "image": user.image}
    return {
        "access_token": create_access_token(str(user.id), **profile),
        "refresh_token": create_refresh_token(str(user.id), **profile),
    }


def refresh_session(refresh_payload: dict) -> dict:
    """Mint a new pair from a verified refresh payload, claims carried over."""
    profile = {
        "name": refresh_payload.get("name"),
        "email": refresh_payload.get("email"),
        "image": refresh_payload.get("picture"),
    }
    sub = refresh_payload["sub"]
    return {
        "access_token": create_access_token(sub, **profile),
        "refresh_token": create_refresh_token(sub, **profile),
    }


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
        return payload
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")


def verify_provider_assertion(assertion: str) -> dict:
    """Decode a third-party sign-in assertion.

    Required claims: provider, sub, email. Optional: name, picture.
    """
    try:
        payload = jwt.decode(
            assertion,
            settings.provider_assertion_secret,
            algorithms=["HS256"],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Assertion has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid assertion: {e}")

    if not payload.get("provider") or not payload.get("email"):
        raise TokenError("Assertion is missing provider or email")
    return payload
