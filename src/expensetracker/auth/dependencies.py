"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current user identity from the request.

The bearer token's claims are copied onto a request-scoped
CurrentIdentity. Nothing is looked up in the database here; the token
signature and expiry are the whole check. A token without a subject
claim counts as no session at all.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException

from expensetracker.auth.jwt import TokenError, verify_token


class CurrentIdentity:
    """Represents the authenticated user making the request.

    Learn: This is the session object. Downstream code reads user_id to
    scope queries; name/email/image are there for display without a
    store round trip.
    """

    def __init__(
        self,
        user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        image: Optional[str] = None,
    ):
        self.user_id = user_id
        self.name = name
        self.email = email
        self.image = image

    @classmethod
    def from_claims(cls, payload: dict) -> Optional["CurrentIdentity"]:
        if not payload.get("sub"):
            return None
        return cls(
            user_id=payload["sub"],
            name=payload.get("name"),
            email=payload.get("email"),
            image=payload.get("picture"),
        )


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional, returns None if no auth).

    Learn: This is the "soft" auth dependency. Used for endpoints that
    work both authenticated and unauthenticated. For mandatory auth,
    use get_current_user instead.
    """
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
        return _authenticate_jwt(token)

    return None


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required, 401 if no auth).

    Learn: This is the "hard" auth dependency. Used for endpoints
    that require authentication.
    """
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def _authenticate_jwt(token: str) -> Optional[CurrentIdentity]:
    """Authenticate via JWT access token."""
    try:
        payload = verify_token(token)
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    if payload.get("type") != "access":
        raise HTTPException(
            status_code=401,
            detail="Not an access token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return CurrentIdentity.from_claims(payload)
