"""Team invitation API.

Learn: Inviting needs a signed-in org owner; inspecting and accepting do
not: the invitee typically has no account yet. So this router is
mounted open and the two owner routes take get_current_user themselves.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from expensetracker.auth.dependencies import CurrentIdentity, get_current_user
from expensetracker.db.engine import get_db
from expensetracker.schemas.team import (
    AcceptInviteRequest,
    AcceptInviteResponse,
    InviteCreate,
    InviteCreated,
    InviteDetails,
    InviteRead,
    MemberRead,
)
from expensetracker.services.email_service import EmailService, get_email_service
from expensetracker.services.invitation_service import InvitationService, NewUserData

router = APIRouter(prefix="/team-invites")


@router.post(
    "",
    response_model=InviteCreated,
    response_model_exclude_none=True,
    status_code=201,
)
async def create_invite(
    body: InviteCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    email: EmailService = Depends(get_email_service),
):
    """Invite someone to an organization the caller owns."""
    outcome = await InvitationService(db, email).create_invitation(
        inviter_id=uuid.UUID(identity.user_id),
        org_id=body.org_id,
        email=body.email,
        role=body.role,
        department=body.department,
        phone=body.phone,
        permissions=body.permissions,
        inviter_name=identity.name,
    )
    return InviteCreated(
        message=outcome.message,
        invite_id=outcome.invitation.id,
        invite_url=outcome.invite_url,
    )


@router.get("", response_model=list[InviteRead])
async def list_invites(
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    email: EmailService = Depends(get_email_service),
):
    """Pending invitations the caller has sent."""
    return await InvitationService(db, email).list_pending(uuid.UUID(identity.user_id))


@router.get("/details", response_model=InviteDetails)
async def invite_details(
    token: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    email: EmailService = Depends(get_email_service),
):
    return await InvitationService(db, email).get_details(token)


@router.post("/accept", response_model=AcceptInviteResponse)
async def accept_invite(
    body: AcceptInviteRequest,
    db: AsyncSession = Depends(get_db),
    email: EmailService = Depends(get_email_service),
):
    """Accept an invitation, creating the account first if userData is given."""
    new_user = None
    if body.user_data is not None:
        new_user = NewUserData(
            name=body.user_data.name, password=body.user_data.password
        )

    member = await InvitationService(db, email).accept_invitation(body.token, new_user)
    return AcceptInviteResponse(
        message="Successfully joined the team",
        team_member=MemberRead.model_validate(member),
    )
