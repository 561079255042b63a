"""Auth API — registration, sign-in, sessions, password reset.

Learn: Routes for the identity lifecycle:
- POST /auth/register → create a password account (does not sign in)
- POST /auth/login → email/password → JWT tokens
- POST /auth/oauth → third-party sign-in assertion → JWT tokens
- POST /auth/refresh → refresh token → new token pair
- GET /auth/me → current session claims
- POST /auth/forgot-password → email a single-use reset link
- GET /auth/reset-password → is this reset token still usable?
- POST /auth/reset-password → token + new password → password changed

Routes stay thin: services raise IdentityError subclasses and the app's
exception handler renders them.
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from expensetracker.auth.dependencies import CurrentIdentity, get_current_user
from expensetracker.auth.jwt import (
    TokenError,
    issue_session,
    refresh_session,
    verify_provider_assertion,
    verify_token,
)
from expensetracker.db.engine import get_db
from expensetracker.errors import InvalidCredentials
from expensetracker.services.credential_store import CredentialStore
from expensetracker.services.email_service import EmailService, get_email_service
from expensetracker.services.identity_service import IdentityResolver
from expensetracker.services.password_reset_service import PasswordResetService

router = APIRouter(prefix="/auth")


# ─── Schemas ─────────────────────────────────────────────


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=100)
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class OAuthRequest(BaseModel):
    assertion: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class UserRead(BaseModel):
    """Public view of a user; never carries the password hash."""
    id: uuid.UUID
    email: str
    name: str
    image: Optional[str] = None
    auth_method: str
    email_verified_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = None


class ForgotPasswordResponse(BaseModel):
    message: str
    reset_url: Optional[str] = Field(None, serialization_alias="resetUrl")


class ResetPasswordRequest(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None


class ResetTokenStatus(BaseModel):
    valid: bool
    email: str


class MessageResponse(BaseModel):
    message: str


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=UserRead, status_code=201)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Create a new user account."""
    store = CredentialStore(db)
    return await store.register_password_user(body.name, body.email, body.password)


# ─── Sign-in ─────────────────────────────────────────────


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login with email and password → JWT tokens."""
    resolver = IdentityResolver(db)
    user = await resolver.authenticate_credentials(body.email, body.password)
    return TokenResponse(**issue_session(user))


@router.post("/oauth", response_model=TokenResponse)
async def oauth_sign_in(body: OAuthRequest, db: AsyncSession = Depends(get_db)):
    """Third-party sign-in. Links onto an existing account with the same email."""
    try:
        claims = verify_provider_assertion(body.assertion)
    except TokenError:
        raise InvalidCredentials()

    resolver = IdentityResolver(db)
    user = await resolver.resolve_third_party(
        provider=claims["provider"],
        subject=str(claims["sub"]),
        email=claims["email"],
        name=claims.get("name"),
        image=claims.get("picture"),
    )
    return TokenResponse(**issue_session(user))


# ─── Refresh ────────────────────────────────────────────


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest):
    """Exchange a refresh token for a new token pair."""
    try:
        payload = verify_token(body.refresh_token)
    except TokenError as e:
        raise HTTPException(status_code=401, detail=str(e))
    if payload.get("type") != "refresh" or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Not a refresh token")

    return TokenResponse(**refresh_session(payload))


# ─── Current user ───────────────────────────────────────


@router.get("/me")
async def get_me(identity: CurrentIdentity = Depends(get_current_user)):
    """The session as carried by the token, no database lookup."""
    return {
        "id": identity.user_id,
        "email": identity.email,
        "name": identity.name,
        "image": identity.image,
    }


# ─── Password reset ─────────────────────────────────────


@router.post(
    "/forgot-password",
    response_model=ForgotPasswordResponse,
    response_model_exclude_none=True,
)
async def forgot_password(
    body: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
    email: EmailService = Depends(get_email_service),
):
    """Send a reset link. Same answer whether or not the email is registered."""
    outcome = await PasswordResetService(db, email).request_reset(body.email)
    return ForgotPasswordResponse(message=outcome.message, reset_url=outcome.reset_url)


@router.get("/reset-password", response_model=ResetTokenStatus)
async def check_reset_token(
    token: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    email: EmailService = Depends(get_email_service),
):
    owner = await PasswordResetService(db, email).validate_token(token)
    return ResetTokenStatus(valid=True, email=owner)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    email: EmailService = Depends(get_email_service),
):
    await PasswordResetService(db, email).complete_reset(body.token, body.password)
    return MessageResponse(message="Password has been reset successfully")
