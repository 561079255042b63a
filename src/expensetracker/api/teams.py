"""Organization, membership, and permission API routes.

Learn: FastAPI routers define HTTP endpoints. Each route function
receives dependencies (db session, current identity) via Depends() and
delegates to the service layer. Routes handle HTTP concerns (status
codes, error responses), services handle business logic.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from expensetracker.auth.dependencies import CurrentIdentity, get_current_user
from expensetracker.db.engine import get_db
from expensetracker.errors import NotFound
from expensetracker.schemas.team import (
    AccessRead,
    EventRead,
    MemberRead,
    MemberRemoved,
    MemberUpdate,
    OrgCreate,
    OrgRead,
)
from expensetracker.services.team_service import OrgAccess, TeamService

router = APIRouter()


def _svc(db: AsyncSession = Depends(get_db)) -> TeamService:
    return TeamService(db)


async def _access(
    svc: TeamService, identity: CurrentIdentity, org_id: uuid.UUID
) -> OrgAccess:
    try:
        return await svc.get_access(uuid.UUID(identity.user_id), org_id)
    except NotFound as e:
        raise HTTPException(status_code=403, detail=e.message)


# ─── Organizations ──────────────────────────────────────

@router.post("/orgs", response_model=OrgRead, status_code=201)
async def create_org(
    body: OrgCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TeamService = Depends(_svc),
):
    return await svc.create_org(
        owner_id=uuid.UUID(identity.user_id),
        name=body.name,
        industry=body.industry,
    )


@router.get("/orgs", response_model=list[OrgRead])
async def list_orgs(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TeamService = Depends(_svc),
):
    return await svc.list_orgs(uuid.UUID(identity.user_id))


# ─── Members ────────────────────────────────────────────

@router.get("/orgs/{org_id}/members", response_model=list[MemberRead])
async def list_members(
    org_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TeamService = Depends(_svc),
):
    await _access(svc, identity, org_id)
    return await svc.list_members(org_id)


@router.put("/orgs/{org_id}/members/{member_id}", response_model=MemberRead)
async def update_member(
    org_id: uuid.UUID,
    member_id: uuid.UUID,
    body: MemberUpdate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TeamService = Depends(_svc),
):
    """Owner changes a member's role, department, phone, or permissions."""
    return await svc.update_member(
        uuid.UUID(identity.user_id),
        org_id,
        member_id,
        body.model_dump(exclude_unset=True),
    )


@router.delete("/orgs/{org_id}/members/{member_id}", response_model=MemberRemoved)
async def remove_member(
    org_id: uuid.UUID,
    member_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TeamService = Depends(_svc),
):
    await svc.remove_member(uuid.UUID(identity.user_id), org_id, member_id)
    return MemberRemoved(message="Team member removed successfully")


# ─── Permissions ────────────────────────────────────────

@router.get("/user-permissions", response_model=AccessRead)
async def user_permissions(
    org_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TeamService = Depends(_svc),
):
    """What the caller may do in an organization."""
    return await _access(svc, identity, org_id)


# ─── Audit trail ────────────────────────────────────────

@router.get("/orgs/{org_id}/audit-log", response_model=list[EventRead])
async def audit_log(
    org_id: uuid.UUID,
    limit: int = Query(100, ge=1, le=500),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TeamService = Depends(_svc),
):
    """Membership history of an organization, oldest first."""
    if not await svc.has_permission(uuid.UUID(identity.user_id), org_id, "view_audit_logs"):
        raise HTTPException(
            status_code=403,
            detail="You do not have access to audit logs for this company",
        )
    return await svc.audit_log(org_id, limit=limit)
