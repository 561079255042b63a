"""Invitation orchestrator — invite people to an organization, accept once.

Learn: accept_invitation runs steps 2–4 in one transaction:
  1. find a usable invitation (unaccepted, unexpired)
  2. resolve the invited email to a user, creating a password user
     when the caller supplied name + password
  3. insert the membership (partial unique index → AlreadyMember)
  4. flip accepted with a conditional UPDATE (0 rows → someone else
     accepted it first)
If any step fails everything rolls back: no user without membership, no
membership with a still-usable invitation. The welcome email goes out
only after the commit, and its outcome never undoes the acceptance.

Acceptance always binds to the invitation's email. A signed-in session
for some other address cannot claim it.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from expensetracker.db.models import Invitation, TeamMember, User
from expensetracker.errors import (
    AccountRequired,
    AlreadyMember,
    DeliveryFailure,
    DuplicateEmail,
    IdentityError,
    InternalError,
    InvalidInput,
    InvalidOrExpiredInvitation,
    NotFound,
)
from expensetracker.events.store import EventStore
from expensetracker.events.types import (
    INVITATION_ACCEPTED,
    INVITATION_CREATED,
    MEMBER_ADDED,
)
from expensetracker.services.credential_store import CredentialStore, normalize_email
from expensetracker.services.email_service import EmailService
from expensetracker.services.invitation_store import InvitationStore
from expensetracker.services.team_service import (
    DEFAULT_INVITE_PERMISSIONS,
    TeamService,
    unknown_permissions,
)

logger = structlog.get_logger()


@dataclass
class NewUserData:
    name: Optional[str] = None
    password: Optional[str] = None


@dataclass
class InviteOutcome:
    invitation: Invitation
    message: str
    invite_url: Optional[str] = None


class InvitationService:
    def __init__(self, db: AsyncSession, email: EmailService):
        self.db = db
        self.email = email
        self.credentials = CredentialStore(db)
        self.invitations = InvitationStore(db)
        self.teams = TeamService(db)
        self.events = EventStore(db)

    # ─── Create ───────────────────────────────────────────

    async def create_invitation(
        self,
        inviter_id: uuid.UUID,
        org_id: uuid.UUID,
        email: str,
        role: str,
        *,
        department: Optional[str] = None,
        phone: Optional[str] = None,
        permissions: Optional[list[str]] = None,
        inviter_name: Optional[str] = None,
    ) -> InviteOutcome:
        email = normalize_email(email)
        role = (role or "").strip()
        if not email or not role:
            raise InvalidInput("Email, company, and role are required")
        unknown = unknown_permissions(permissions)
        if unknown:
            raise InvalidInput(f"Unknown permissions: {', '.join(unknown)}")

        org = await self.teams.get_owned_org(org_id, inviter_id)
        if org is None:
            raise NotFound("Company not found or unauthorized")

        if await self.teams.find_active_member_by_email(org_id, email):
            raise AlreadyMember("User is already a member of this company")

        try:
            invite = await self.invitations.add(
                email=email,
                org_id=org_id,
                role=role,
                inviter_id=inviter_id,
                department=(department or "").strip() or None,
                phone=(phone or "").strip() or None,
                permissions=permissions or DEFAULT_INVITE_PERMISSIONS,
            )
            await self.events.append(
                stream_id=f"invitation:{invite.id}",
                event_type=INVITATION_CREATED,
                data={"org_id": str(org_id), "role": role},
                metadata={"actor_id": str(inviter_id)},
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise InvalidInput(
                "An invitation has already been sent to this email for this company"
            )

        inviter = await self.credentials.get_by_id(inviter_id)
        name = (inviter.name if inviter else None) or inviter_name or "A team member"
        result = await self.email.send_team_invite(
            invite.email,
            invite.token,
            inviter_name=name,
            org_name=org.name,
            role=role,
        )
        if not result.success:
            await self.invitations.delete(invite.id)
            await self.db.commit()
            raise DeliveryFailure(
                "Failed to send invitation email. Please configure an email "
                "service or try again later."
            )

        logger.info("invitation.created", invitation_id=str(invite.id), org_id=str(org_id))
        if result.logged:
            return InviteOutcome(
                invitation=invite,
                message=(
                    "Invitation created successfully (email service not "
                    "configured - check the server log for the invitation link)"
                ),
                invite_url=result.link,
            )
        return InviteOutcome(invitation=invite, message="Invitation sent successfully")

    # ─── Inspect ──────────────────────────────────────────

    async def get_details(self, token: Optional[str]) -> dict:
        if not token:
            raise InvalidInput("Token is required")
        invite = await self.invitations.find_usable(token)
        if invite is None:
            raise InvalidOrExpiredInvitation()

        org = await self.teams.get_org(invite.org_id)
        inviter = (
            await self.credentials.get_by_id(invite.inviter_id)
            if invite.inviter_id
            else None
        )
        existing = await self.credentials.get_by_email(invite.email)
        return {
            "email": invite.email,
            "role": invite.role,
            "department": invite.department,
            "org_id": invite.org_id,
            "org_name": org.name if org else None,
            "inviter_name": inviter.name if inviter else "A team member",
            "permissions": list(invite.permissions or []),
            "expires_at": invite.expires_at,
            "user_exists": existing is not None,
            "user_name": existing.name if existing else None,
        }

    async def list_pending(self, inviter_id: uuid.UUID) -> list[Invitation]:
        return await self.invitations.list_pending(inviter_id)

    # ─── Accept ───────────────────────────────────────────

    async def accept_invitation(
        self, token: Optional[str], new_user: Optional[NewUserData] = None
    ) -> TeamMember:
        if not token:
            raise InvalidInput("Invitation token is required")

        invite = await self.invitations.find_usable(token)
        if invite is None:
            raise InvalidOrExpiredInvitation()

        try:
            user, created = await self._resolve_invitee(invite, new_user)
            member = await self._add_member(invite, user)
            if not await self.invitations.mark_accepted(invite.id):
                raise InvalidOrExpiredInvitation()

            await self.events.append(
                stream_id=f"invitation:{invite.id}",
                event_type=INVITATION_ACCEPTED,
                data={"user_id": str(user.id), "new_user": created},
            )
            await self.events.append(
                stream_id=f"org:{invite.org_id}",
                event_type=MEMBER_ADDED,
                data={"user_id": str(user.id), "role": invite.role},
            )
            await self.db.commit()
        except DuplicateEmail:
            # Someone created an account for this email after our lookup,
            # possibly a concurrent acceptance of this same invitation.
            await self.db.rollback()
            if await self.invitations.find_usable(token) is None:
                raise InvalidOrExpiredInvitation()
            raise AccountRequired(
                "An account with this email already exists. "
                "Please sign in to accept this invitation."
            )
        except IdentityError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("invitation.accept_failed", error=str(e))
            raise InternalError("Failed to accept invitation") from e

        logger.info(
            "invitation.accepted",
            invitation_id=str(invite.id),
            member_id=str(member.id),
            new_user=created,
        )
        if created:
            result = await self.email.send_welcome(user.email, user.name)
            if not result.success:
                logger.warning("invitation.welcome_email_failed", user_id=str(user.id))
        return member

    async def _resolve_invitee(
        self, invite: Invitation, new_user: Optional[NewUserData]
    ) -> tuple[User, bool]:
        user = await self.credentials.get_by_email(invite.email)
        if user is not None:
            return user, False
        if new_user is None:
            raise AccountRequired()
        if not (new_user.name or "").strip() or not new_user.password:
            raise InvalidInput("Name and password are required for new users")
        user = await self.credentials.add_password_user(
            new_user.name, invite.email, new_user.password
        )
        return user, True

    async def _add_member(self, invite: Invitation, user: User) -> TeamMember:
        member = TeamMember(
            org_id=invite.org_id,
            user_id=user.id,
            name=user.name,
            email=user.email,
            role=invite.role,
            department=invite.department,
            phone=invite.phone,
            permissions=list(invite.permissions or []),
            is_active=True,
        )
        self.db.add(member)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise AlreadyMember()
        return member
