"""Team service — organizations, memberships, and permission checks.

Learn: Service layer separates business logic from HTTP routing.
API routes call services, services call the database.
This makes the code testable (test services without HTTP)
and reusable (routes and the invitation flow share the same logic).

Owners hold every permission implicitly; members hold whatever their
invitation granted. "admin_access" acts as a wildcard.

Removing a member deactivates the row rather than deleting it, so the
person can be invited and accepted again later; only one membership per
(org, user) may be active at a time. Pending invitations for the removed
email go in the same transaction, so an old link cannot bring them back.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from expensetracker.db.models import Event, Organization, TeamMember
from expensetracker.errors import InvalidInput, NotFound
from expensetracker.events.store import EventStore
from expensetracker.events.types import MEMBER_REMOVED, MEMBER_UPDATED, ORG_CREATED
from expensetracker.services.invitation_store import InvitationStore

PERMISSIONS = (
    "view_expenses",
    "create_expenses",
    "edit_expenses",
    "delete_expenses",
    "view_budgets",
    "create_budgets",
    "edit_budgets",
    "delete_budgets",
    "view_analytics",
    "manage_team",
    "manage_companies",
    "view_audit_logs",
    "admin_access",
)
DEFAULT_INVITE_PERMISSIONS = ["view_expenses", "create_expenses"]


def unknown_permissions(permissions: list[str] | None) -> list[str]:
    return sorted(set(permissions or []) - set(PERMISSIONS))


@dataclass
class OrgAccess:
    org_id: uuid.UUID
    is_owner: bool
    permissions: list[str] = field(default_factory=list)
    role: Optional[str] = None
    department: Optional[str] = None

    def allows(self, permission: str) -> bool:
        if self.is_owner or "admin_access" in self.permissions:
            return True
        return permission in self.permissions


class TeamService:
    """Business logic for organizations and their members."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = EventStore(db)

    # ─── Organizations ──────────────────────────────────

    async def create_org(
        self, owner_id: uuid.UUID, name: str, industry: Optional[str] = None
    ) -> Organization:
        org = Organization(name=name, industry=industry, owner_id=owner_id)
        self.db.add(org)
        await self.db.flush()

        await self.events.append(
            stream_id=f"org:{org.id}",
            event_type=ORG_CREATED,
            data={"name": name, "owner_id": str(owner_id)},
        )

        await self.db.commit()
        return org

    async def get_org(self, org_id: uuid.UUID) -> Organization | None:
        return await self.db.get(Organization, org_id)

    async def get_owned_org(
        self, org_id: uuid.UUID, owner_id: uuid.UUID
    ) -> Organization | None:
        result = await self.db.execute(
            select(Organization).where(
                Organization.id == org_id, Organization.owner_id == owner_id
            )
        )
        return result.scalars().first()

    async def list_orgs(self, user_id: uuid.UUID) -> list[Organization]:
        """Orgs the user owns or is an active member of."""
        member_of = select(TeamMember.org_id).where(
            TeamMember.user_id == user_id, TeamMember.is_active.is_(True)
        )
        result = await self.db.execute(
            select(Organization)
            .where(
                or_(
                    Organization.owner_id == user_id,
                    Organization.id.in_(member_of),
                )
            )
            .order_by(Organization.name)
        )
        return list(result.scalars().all())

    # ─── Members ────────────────────────────────────────

    async def list_members(self, org_id: uuid.UUID) -> list[TeamMember]:
        result = await self.db.execute(
            select(TeamMember)
            .where(TeamMember.org_id == org_id, TeamMember.is_active.is_(True))
            .order_by(TeamMember.name)
        )
        return list(result.scalars().all())

    async def find_active_member_by_email(
        self, org_id: uuid.UUID, email: str
    ) -> TeamMember | None:
        result = await self.db.execute(
            select(TeamMember).where(
                TeamMember.org_id == org_id,
                TeamMember.email == email,
                TeamMember.is_active.is_(True),
            )
        )
        return result.scalars().first()

    # ─── Permissions ────────────────────────────────────

    async def get_access(self, user_id: uuid.UUID, org_id: uuid.UUID) -> OrgAccess:
        org = await self.get_org(org_id)
        if org is None:
            raise NotFound("No access to this company")
        if org.owner_id == user_id:
            return OrgAccess(org_id=org.id, is_owner=True, permissions=["all"])

        result = await self.db.execute(
            select(TeamMember).where(
                TeamMember.org_id == org_id,
                TeamMember.user_id == user_id,
                TeamMember.is_active.is_(True),
            )
        )
        member = result.scalars().first()
        if member is None:
            raise NotFound("No access to this company")
        return OrgAccess(
            org_id=org.id,
            is_owner=False,
            permissions=list(member.permissions or []),
            role=member.role,
            department=member.department,
        )

    async def has_permission(
        self, user_id: uuid.UUID, org_id: uuid.UUID, permission: str
    ) -> bool:
        try:
            access = await self.get_access(user_id, org_id)
        except NotFound:
            return False
        return access.allows(permission)

    # ─── Member management (owner only) ─────────────────

    async def _owned_member(
        self, actor_id: uuid.UUID, org_id: uuid.UUID, member_id: uuid.UUID, verb: str
    ) -> TeamMember:
        org = await self.get_owned_org(org_id, actor_id)
        member = await self.db.get(TeamMember, member_id) if org else None
        if member is None or member.org_id != org_id or not member.is_active:
            raise NotFound(
                f"Team member not found or you don't have permission to {verb}"
            )
        return member

    async def update_member(
        self,
        actor_id: uuid.UUID,
        org_id: uuid.UUID,
        member_id: uuid.UUID,
        changes: dict,
    ) -> TeamMember:
        """Change role, department, phone, or permissions of an active member."""
        unknown = unknown_permissions(changes.get("permissions"))
        if unknown:
            raise InvalidInput(f"Unknown permissions: {', '.join(unknown)}")
        if "role" in changes and not (changes["role"] or "").strip():
            raise InvalidInput("Role cannot be empty")

        member = await self._owned_member(actor_id, org_id, member_id, "edit")
        for key in ("role", "department", "phone", "permissions"):
            if key in changes:
                value = changes[key]
                if key == "permissions":
                    value = list(value or [])
                elif isinstance(value, str):
                    value = value.strip() or None
                setattr(member, key, value)
        await self.db.flush()

        await self.events.append(
            stream_id=f"org:{org_id}",
            event_type=MEMBER_UPDATED,
            data={"member_id": str(member.id), "fields": sorted(changes)},
            metadata={"actor_id": str(actor_id)},
        )
        await self.db.commit()
        return member

    async def remove_member(
        self, actor_id: uuid.UUID, org_id: uuid.UUID, member_id: uuid.UUID
    ) -> TeamMember:
        member = await self._owned_member(actor_id, org_id, member_id, "remove")
        member.is_active = False
        await self.db.flush()
        dropped = await InvitationStore(self.db).delete_pending(member.email, org_id)

        await self.events.append(
            stream_id=f"org:{org_id}",
            event_type=MEMBER_REMOVED,
            data={
                "member_id": str(member.id),
                "user_id": str(member.user_id),
                "pending_invitations_dropped": dropped,
            },
            metadata={"actor_id": str(actor_id)},
        )
        await self.db.commit()
        return member

    # ─── Audit trail ────────────────────────────────────

    async def audit_log(self, org_id: uuid.UUID, limit: int = 100) -> list[Event]:
        return await self.events.read_stream(f"org:{org_id}", limit=limit)
