"""Password reset orchestrator — forgot-password and reset-password.

Learn: Per request the token moves through
    Requested → TokenIssued → (Consumed | Expired | SupersededByNewRequest)

request_reset never tells the caller whether the email is registered:
unknown emails get the same message as known ones. The one visible
difference is a delivery failure, which is an operational problem rather
than an identity leak.

The unknown-email branch returns before any write or dispatch, so its
latency differs from a real request. Response bodies match; timing and
request volume are left to the rate limiter in front of the service.

complete_reset changes the password and consumes the token in a single
transaction: either both land or neither does.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from expensetracker.errors import (
    DeliveryFailure,
    InternalError,
    InvalidInput,
    InvalidOrExpiredToken,
)
from expensetracker.events.store import EventStore
from expensetracker.events.types import (
    PASSWORD_RESET_COMPLETED,
    PASSWORD_RESET_REQUESTED,
)
from expensetracker.services.credential_store import (
    CredentialStore,
    check_password_length,
    normalize_email,
)
from expensetracker.services.email_service import EmailService
from expensetracker.services.reset_token_store import ResetTokenStore

logger = structlog.get_logger()

GENERIC_RESET_MESSAGE = (
    "If an account with that email exists, a password reset link has been sent."
)
LOGGED_RESET_MESSAGE = (
    "Password reset request created (email service not configured - "
    "check the server log for the reset link)"
)


@dataclass
class ResetRequestOutcome:
    message: str
    reset_url: Optional[str] = None


class PasswordResetService:
    def __init__(self, db: AsyncSession, email: EmailService):
        self.db = db
        self.email = email
        self.credentials = CredentialStore(db)
        self.tokens = ResetTokenStore(db)
        self.events = EventStore(db)

    async def request_reset(self, email: Optional[str]) -> ResetRequestOutcome:
        email = normalize_email(email)
        if not email:
            raise InvalidInput("Email is required")

        user = await self.credentials.get_by_email(email)
        if user is None:
            logger.info("password_reset.unknown_email")
            return ResetRequestOutcome(message=GENERIC_RESET_MESSAGE)

        # rollback() expires `user`; keep what the log lines need.
        user_id = str(user.id)
        try:
            reset = await self.tokens.issue(user)
            await self.events.append(
                stream_id=f"user:{user.id}",
                event_type=PASSWORD_RESET_REQUESTED,
                data={"reset_id": str(reset.id)},
            )
            await self.db.commit()
        except IntegrityError:
            # A concurrent request for the same user holds the active token;
            # its email is already on the way.
            await self.db.rollback()
            logger.info("password_reset.superseded_concurrently", user_id=user_id)
            return ResetRequestOutcome(message=GENERIC_RESET_MESSAGE)

        reset_id, token = reset.id, reset.token
        result = await self.email.send_password_reset(
            to=user.email, token=token, user_name=user.name
        )

        if not result.success:
            await self.tokens.delete(reset_id)
            await self.db.commit()
            logger.warning("password_reset.delivery_failed", user_id=user_id)
            raise DeliveryFailure(
                "Failed to send password reset email. Please try again later."
            )

        logger.info("password_reset.requested", user_id=user_id, logged=result.logged)
        if result.logged:
            return ResetRequestOutcome(
                message=LOGGED_RESET_MESSAGE, reset_url=result.link
            )
        return ResetRequestOutcome(message=GENERIC_RESET_MESSAGE)

    async def validate_token(self, token: Optional[str]) -> str:
        """Return the email a usable token belongs to."""
        if not token:
            raise InvalidInput("Token is required")
        reset = await self.tokens.find_usable(token)
        if reset is None:
            raise InvalidOrExpiredToken()
        user = await self.credentials.get_by_id(reset.user_id)
        if user is None:
            raise InvalidOrExpiredToken()
        return user.email

    async def complete_reset(self, token: Optional[str], new_password: Optional[str]) -> None:
        if not token or not new_password:
            raise InvalidInput("Token and password are required")
        check_password_length(new_password)

        reset = await self.tokens.find_usable(token)
        if reset is None:
            raise InvalidOrExpiredToken()

        try:
            user = await self.credentials.get_by_id(reset.user_id)
            if user is None:
                raise InvalidOrExpiredToken()

            await self.credentials.set_password(user, new_password)
            if not await self.tokens.consume(reset.id):
                # Used by a concurrent request between lookup and update.
                raise InvalidOrExpiredToken()

            await self.events.append(
                stream_id=f"user:{user.id}",
                event_type=PASSWORD_RESET_COMPLETED,
                data={"reset_id": str(reset.id)},
            )
            await self.db.commit()
        except InvalidOrExpiredToken:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("password_reset.complete_failed", error=str(e))
            raise InternalError("Could not reset password") from e

        logger.info("password_reset.completed", user_id=str(user.id))
