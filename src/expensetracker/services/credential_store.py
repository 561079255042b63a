"""Credential store — persisted users and their password hashes.

Learn: The only module that writes password_hash. Registration is a
plain INSERT guarded by the unique email index; a losing concurrent
registration surfaces as DuplicateEmail from the IntegrityError rather
than from a SELECT-then-INSERT check.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from expensetracker.auth.password import hash_password
from expensetracker.config import settings
from expensetracker.db.models import AUTH_CREDENTIALS, User
from expensetracker.errors import DuplicateEmail, InvalidInput
from expensetracker.events.store import EventStore
from expensetracker.events.types import USER_REGISTERED

logger = structlog.get_logger()


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def check_password_length(password: Optional[str]) -> None:
    if not password or len(password) < settings.min_password_length:
        raise InvalidInput(
            f"Password must be at least {settings.min_password_length} characters long"
        )


class CredentialStore:
    """Reads and writes User rows."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = EventStore(db)

    async def get_by_email(self, email: str) -> User | None:
        result = await self.db.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalars().first()

    async def get_by_id(self, user_id: uuid.UUID | str) -> User | None:
        if isinstance(user_id, str):
            user_id = uuid.UUID(user_id)
        return await self.db.get(User, user_id)

    async def get_by_provider(self, provider: str, subject: str) -> User | None:
        result = await self.db.execute(
            select(User).where(
                User.provider == provider, User.provider_subject == subject
            )
        )
        return result.scalars().first()

    async def add_password_user(
        self, name: str, email: str, password: str
    ) -> User:
        """Insert a password user inside the caller's transaction.

        Flushes but does not commit, so an invitation acceptance can
        create the user and the membership atomically. Raises
        DuplicateEmail (after rolling back) if the email is taken.
        """
        name = (name or "").strip()
        email = normalize_email(email)
        if not name or not email:
            raise InvalidInput("Name, email, and password are required")
        check_password_length(password)

        user = User(
            name=name,
            email=email,
            password_hash=hash_password(password),
            auth_method=AUTH_CREDENTIALS,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateEmail()

        await self.events.append(
            stream_id=f"user:{user.id}",
            event_type=USER_REGISTERED,
            data={"email": email, "auth_method": AUTH_CREDENTIALS},
        )
        return user

    async def register_password_user(
        self, name: str, email: str, password: str
    ) -> User:
        """Create and commit a new `credentials` user."""
        user = await self.add_password_user(name, email, password)
        await self.db.commit()
        logger.info("user.registered", user_id=str(user.id))
        return user

    async def set_password(self, user: User, password: str) -> None:
        """Re-hash and stage a new password (caller commits)."""
        check_password_length(password)
        user.password_hash = hash_password(password)
        await self.db.flush()
