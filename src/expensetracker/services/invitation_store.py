"""Invitation store — single-use organization invitations."""

import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from expensetracker.config import settings
from expensetracker.db.models import Invitation, utcnow
from expensetracker.services.reset_token_store import new_secret


class InvitationStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(
        self,
        *,
        email: str,
        org_id: uuid.UUID,
        role: str,
        inviter_id: Optional[uuid.UUID] = None,
        department: Optional[str] = None,
        phone: Optional[str] = None,
        permissions: Optional[list[str]] = None,
    ) -> Invitation:
        """Replace any pending invitation for (email, org) with a new one.

        Flushes; the caller commits. A concurrent insert for the same pair
        trips uq_invitations_pending_email_org on flush.
        """
        await self.delete_pending(email, org_id)
        invite = Invitation(
            token=new_secret(),
            email=email,
            org_id=org_id,
            inviter_id=inviter_id,
            role=role,
            department=department,
            phone=phone,
            permissions=list(permissions or []),
            expires_at=utcnow() + timedelta(days=settings.invite_ttl_days),
        )
        self.db.add(invite)
        await self.db.flush()
        return invite

    async def delete_pending(self, email: str, org_id: uuid.UUID) -> int:
        """Drop every unaccepted invitation for (email, org)."""
        result = await self.db.execute(
            delete(Invitation)
            .where(
                Invitation.email == email,
                Invitation.org_id == org_id,
                Invitation.accepted.is_(False),
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def find_usable(self, token: str) -> Invitation | None:
        if not token:
            return None
        result = await self.db.execute(
            select(Invitation).where(
                Invitation.token == token,
                Invitation.accepted.is_(False),
                Invitation.expires_at > utcnow(),
            )
        )
        return result.scalars().first()

    async def list_pending(self, inviter_id: uuid.UUID) -> list[Invitation]:
        result = await self.db.execute(
            select(Invitation)
            .where(
                Invitation.inviter_id == inviter_id,
                Invitation.accepted.is_(False),
                Invitation.expires_at > utcnow(),
            )
            .order_by(Invitation.created_at.desc())
        )
        return list(result.scalars().all())

    async def mark_accepted(self, invite_id: uuid.UUID) -> bool:
        """Flip accepted exactly once. False if it was already accepted."""
        result = await self.db.execute(
            update(Invitation)
            .where(Invitation.id == invite_id, Invitation.accepted.is_(False))
            .values(accepted=True, accepted_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete(self, invite_id: uuid.UUID) -> None:
        await self.db.execute(delete(Invitation).where(Invitation.id == invite_id))
