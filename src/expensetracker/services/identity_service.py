"""Identity resolver — turns a proof of identity into one canonical user.

Learn: Two entry points:

1. authenticate_credentials(email, password)
   Every failure (no such user, no password on the account, wrong
   password) raises the same InvalidCredentials, and the no-hash paths
   still pay for one bcrypt comparison, so neither the response nor its
   timing tells an attacker whether the email is registered.

2. resolve_third_party(provider, subject, email, name, image)
   Resolution order:
     a. (provider, subject) already known → that user
     b. email already known → link the provider onto that user
        (password hash untouched) → that user
     c. otherwise → brand-new third-party-only user
   So someone who registered with a password and later signs in with a
   provider using the same email ends up with one identity, not two.

   Each user has a single provider slot. Step b links only when that
   slot is empty or already holds the same (provider, subject); a second
   provider, or a new subject from the same provider, is refused with
   AccountLinkNotAllowed rather than repointing the link. That rule is
   fixed. Whether the account's email must be verified before a first
   link is a setting (link_requires_verified_email).

Creation is an INSERT guarded by the unique indexes on email and
(provider, subject). If a concurrent sign-in wins the race, the loser
rolls back and resolves again against the winner's row.
"""

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from expensetracker.auth.password import dummy_verify, verify_password
from expensetracker.config import settings
from expensetracker.db.models import AUTH_THIRD_PARTY, User, utcnow
from expensetracker.errors import (
    AccountLinkNotAllowed,
    InternalError,
    InvalidCredentials,
    InvalidInput,
)
from expensetracker.events.store import EventStore
from expensetracker.events.types import (
    USER_PROVIDER_LINKED,
    USER_REGISTERED,
    USER_SIGNED_IN,
)
from expensetracker.services.credential_store import CredentialStore, normalize_email

logger = structlog.get_logger()


class IdentityResolver:
    """Resolves sign-in attempts to User rows."""

    def __init__(
        self,
        db: AsyncSession,
        link_requires_verified_email: bool | None = None,
    ):
        self.db = db
        self.credentials = CredentialStore(db)
        self.events = EventStore(db)
        if link_requires_verified_email is None:
            link_requires_verified_email = settings.link_requires_verified_email
        self.link_requires_verified_email = link_requires_verified_email

    # ─── Password ─────────────────────────────────────────

    async def authenticate_credentials(self, email: str, password: str) -> User:
        if not email or not password:
            dummy_verify(password or "")
            raise InvalidCredentials()

        user = await self.credentials.get_by_email(email)
        if user is None or not user.password_hash:
            dummy_verify(password)
            raise InvalidCredentials()

        if not verify_password(user.password_hash, password):
            raise InvalidCredentials()

        return user

    # ─── Third-party ──────────────────────────────────────

    async def resolve_third_party(
        self,
        provider: str,
        subject: str,
        email: str,
        name: str | None = None,
        image: str | None = None,
    ) -> User:
        email = normalize_email(email)
        if not provider or not subject or not email:
            raise InvalidInput("Provider, subject, and email are required")

        try:
            return await self._resolve_third_party(
                provider, subject, email, name, image
            )
        except IntegrityError:
            # Lost a creation race; the winner's row is there now.
            await self.db.rollback()
            logger.info("identity.resolve_race", provider=provider)
            try:
                return await self._resolve_third_party(
                    provider, subject, email, name, image
                )
            except IntegrityError as e:
                await self.db.rollback()
                raise InternalError("Could not resolve identity") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("identity.resolve_failed", provider=provider, error=str(e))
            raise InternalError("Could not resolve identity") from e

    async def _resolve_third_party(
        self,
        provider: str,
        subject: str,
        email: str,
        name: str | None,
        image: str | None,
    ) -> User:
        user = await self.credentials.get_by_provider(provider, subject)
        if user is not None:
            user.email_verified_at = utcnow()
            await self.events.append(
                stream_id=f"user:{user.id}",
                event_type=USER_SIGNED_IN,
                data={"provider": provider},
            )
            await self.db.commit()
            return user

        user = await self.credentials.get_by_email(email)
        if user is not None:
            self._check_linkable(user, provider, subject)
            user.auth_method = AUTH_THIRD_PARTY
            user.provider = provider
            user.provider_subject = subject
            if image:
                user.image = image
            user.email_verified_at = utcnow()
            await self.db.flush()
            await self.events.append(
                stream_id=f"user:{user.id}",
                event_type=USER_PROVIDER_LINKED,
                data={"provider": provider},
            )
            await self.db.commit()
            logger.info("user.provider_linked", user_id=str(user.id), provider=provider)
            return user

        user = User(
            name=(name or email.split("@")[0]).strip()[:100],
            email=email,
            image=image,
            auth_method=AUTH_THIRD_PARTY,
            provider=provider,
            provider_subject=subject,
            email_verified_at=utcnow(),
        )
        self.db.add(user)
        await self.db.flush()
        await self.events.append(
            stream_id=f"user:{user.id}",
            event_type=USER_REGISTERED,
            data={"email": email, "auth_method": AUTH_THIRD_PARTY, "provider": provider},
        )
        await self.db.commit()
        logger.info("user.registered", user_id=str(user.id), provider=provider)
        return user

    def _check_linkable(self, user: User, provider: str, subject: str) -> None:
        # One provider slot per user; never repoint an existing link.
        if user.provider_subject is not None and (
            user.provider,
            user.provider_subject,
        ) != (provider, subject):
            raise AccountLinkNotAllowed(
                "This account is already linked to a different sign-in provider"
            )
        if self.link_requires_verified_email and user.email_verified_at is None:
            raise AccountLinkNotAllowed(
                "Verify this account's email before linking a new sign-in method"
            )
