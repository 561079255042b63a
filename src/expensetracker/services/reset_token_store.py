"""Reset token store — single-use, time-bounded password reset secrets.

Learn: "One unconsumed token per user" is the partial unique index
uq_reset_tokens_active_user. issue() deletes the user's old tokens and
inserts the new one in the same transaction; if a concurrent request
already inserted one, the flush raises IntegrityError and the caller
decides what to do. Expiry is enforced by the lookup predicate, not by
a sweeper.
"""

import secrets
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from expensetracker.config import settings
from expensetracker.db.models import PasswordResetToken, User, utcnow


def new_secret() -> str:
    """32 random bytes, hex encoded."""
    return secrets.token_hex(32)


class ResetTokenStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def issue(self, user: User) -> PasswordResetToken:
        """Replace the user's outstanding token with a fresh one.

        Also purges the user's expired rows, consumed or not. Flushes;
        the caller commits.
        """
        now = utcnow()
        await self._purge(user, now)
        reset = PasswordResetToken(
            token=new_secret(),
            user_id=user.id,
            email=user.email,
            expires_at=now + timedelta(minutes=settings.reset_token_ttl_minutes),
        )
        self.db.add(reset)
        await self.db.flush()
        return reset

    async def _purge(self, user: User, now: datetime) -> None:
        await self.db.execute(
            delete(PasswordResetToken)
            .where(
                PasswordResetToken.user_id == user.id,
                or_(
                    PasswordResetToken.consumed.is_(False),
                    PasswordResetToken.expires_at <= now,
                ),
            )
            .execution_options(synchronize_session="fetch")
        )

    async def find_usable(self, token: str) -> PasswordResetToken | None:
        if not token:
            return None
        result = await self.db.execute(
            select(PasswordResetToken).where(
                PasswordResetToken.token == token,
                PasswordResetToken.consumed.is_(False),
                PasswordResetToken.expires_at > utcnow(),
            )
        )
        return result.scalars().first()

    async def consume(self, reset_id: uuid.UUID) -> bool:
        """Flag a token consumed. False if someone else got there first."""
        result = await self.db.execute(
            update(PasswordResetToken)
            .where(
                PasswordResetToken.id == reset_id,
                PasswordResetToken.consumed.is_(False),
            )
            .values(consumed=True, consumed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete(self, reset_id: uuid.UUID) -> None:
        await self.db.execute(
            delete(PasswordResetToken).where(PasswordResetToken.id == reset_id)
        )
