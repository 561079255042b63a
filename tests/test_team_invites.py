"""Team invitation tests — create, inspect, accept once.

Learn: Tests cover:
1. Owners invite by email; a repeat invite replaces the pending one
2. Details are readable without signing in
3. Acceptance creates the account when userData is given, then the
   membership, then flips the invitation, all or nothing
4. Accept-once: a second use of the same token is refused
5. Already-members are refused without a duplicate membership
6. Racing acceptances of one invitation produce exactly one membership
"""

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from expensetracker.db.models import Event, Invitation, TeamMember, User, utcnow
from expensetracker.errors import (
    AccountRequired,
    AlreadyMember,
    InvalidInput,
    InvalidOrExpiredInvitation,
)
from expensetracker.services.credential_store import CredentialStore
from expensetracker.services.invitation_service import InvitationService, NewUserData
from expensetracker.services.invitation_store import InvitationStore

from conftest import RecordingEmailService


async def _all(session_factory, model):
    async with session_factory() as s:
        return list((await s.execute(select(model))).scalars().all())


async def _event_count(session_factory, event_type) -> int:
    async with session_factory() as s:
        result = await s.execute(
            select(func.count()).select_from(Event).where(Event.type == event_type)
        )
        return result.scalar_one()


@pytest.fixture
async def abc123(db_session, org, owner):
    """A pending invitation with a known token for new@co.com."""
    invite = Invitation(
        token="abc123",
        email="new@co.com",
        org_id=org.id,
        inviter_id=owner.id,
        role="Accountant",
        department="Finance",
        permissions=["view_expenses", "view_budgets"],
        expires_at=utcnow() + timedelta(days=7),
    )
    db_session.add(invite)
    await db_session.commit()
    return invite


# ═══════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_invite(client, org, mailer, session_factory):
    r = await client.post(
        "/api/v1/team-invites",
        json={"email": "Hire@Example.com", "org_id": str(org.id), "role": "Manager"},
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert "inviteId" in body
    assert body["inviteUrl"].startswith("http://localhost:3000/team/invite?token=")

    [invite] = await _all(session_factory, Invitation)
    assert invite.email == "hire@example.com"
    assert invite.permissions == ["view_expenses", "create_expenses"]
    assert mailer.outbox[0]["to"] == "hire@example.com"
    assert "Acme Ltd" in mailer.outbox[0]["subject"]


@pytest.mark.asyncio
async def test_reinvite_replaces_pending(client, org, session_factory):
    for role in ("Clerk", "Manager"):
        r = await client.post(
            "/api/v1/team-invites",
            json={"email": "again@example.com", "org_id": str(org.id), "role": role},
        )
        assert r.status_code == 201

    [invite] = await _all(session_factory, Invitation)
    assert invite.role == "Manager"


@pytest.mark.asyncio
async def test_invite_requires_ownership(client, session_factory):
    r = await client.post(
        "/api/v1/team-invites",
        json={"email": "x@example.com", "org_id": str(uuid.uuid4()), "role": "Clerk"},
    )
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"
    assert await _all(session_factory, Invitation) == []


@pytest.mark.asyncio
async def test_invite_existing_member_refused(client, org, abc123):
    r = await client.post(
        "/api/v1/team-invites/accept",
        json={"token": "abc123", "userData": {"name": "Jane", "password": "secret1"}},
    )
    assert r.status_code == 200

    r = await client.post(
        "/api/v1/team-invites",
        json={"email": "new@co.com", "org_id": str(org.id), "role": "Clerk"},
    )
    assert r.status_code == 400
    assert r.json()["code"] == "already_member"


@pytest.mark.asyncio
async def test_invite_delivery_failure_removes_invitation(client, org, mailer, session_factory):
    mailer.mode = "fail"
    r = await client.post(
        "/api/v1/team-invites",
        json={"email": "lost@example.com", "org_id": str(org.id), "role": "Clerk"},
    )
    assert r.status_code == 500
    assert r.json()["code"] == "delivery_failure"
    assert await _all(session_factory, Invitation) == []


@pytest.mark.asyncio
async def test_list_pending_invites(client, org, abc123):
    r = await client.get("/api/v1/team-invites")
    assert r.status_code == 200
    [invite] = r.json()
    assert invite["email"] == "new@co.com"
    assert "token" not in invite


@pytest.mark.asyncio
async def test_create_invite_requires_auth(unauthenticated_client, org):
    r = await unauthenticated_client.post(
        "/api/v1/team-invites",
        json={"email": "x@example.com", "org_id": str(org.id), "role": "Clerk"},
    )
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Details
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_invite_details(unauthenticated_client, abc123):
    r = await unauthenticated_client.get(
        "/api/v1/team-invites/details", params={"token": "abc123"}
    )
    assert r.status_code == 200
    d = r.json()
    assert d["email"] == "new@co.com"
    assert d["role"] == "Accountant"
    assert d["org_name"] == "Acme Ltd"
    assert d["inviter_name"] == "Olivia Owner"
    assert d["permissions"] == ["view_expenses", "view_budgets"]
    assert d["user_exists"] is False
    assert d["user_name"] is None


@pytest.mark.asyncio
async def test_invite_details_unknown_token(unauthenticated_client):
    r = await unauthenticated_client.get(
        "/api/v1/team-invites/details", params={"token": "nope"}
    )
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_or_expired_invitation"


# ═══════════════════════════════════════════════════════════
# Accept
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_accept_abc123_scenario(unauthenticated_client, abc123, org, mailer, session_factory):
    r = await unauthenticated_client.post(
        "/api/v1/team-invites/accept",
        json={"token": "abc123", "userData": {"name": "Jane", "password": "secret1"}},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Successfully joined the team"
    member = body["teamMember"]
    assert member["email"] == "new@co.com"
    assert member["name"] == "Jane"
    assert member["role"] == "Accountant"
    assert member["department"] == "Finance"
    assert member["permissions"] == ["view_expenses", "view_budgets"]
    assert member["org_id"] == str(org.id)

    users = await _all(session_factory, User)
    jane = next(u for u in users if u.email == "new@co.com")
    assert jane.auth_method == "credentials"
    assert member["user_id"] == str(jane.id)

    [invite] = await _all(session_factory, Invitation)
    assert invite.accepted is True
    assert invite.accepted_at is not None

    assert mailer.outbox[-1]["to"] == "new@co.com"
    assert "Welcome" in mailer.outbox[-1]["subject"]

    r = await unauthenticated_client.post(
        "/api/v1/team-invites/accept",
        json={"token": "abc123", "userData": {"name": "Jane", "password": "secret1"}},
    )
    assert r.status_code == 400
    assert r.json() == {
        "detail": "Invalid or expired invitation",
        "code": "invalid_or_expired_invitation",
    }
    assert len(await _all(session_factory, TeamMember)) == 1

    r = await unauthenticated_client.post(
        "/api/v1/auth/login", json={"email": "new@co.com", "password": "secret1"}
    )
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_accept_without_account_or_data(unauthenticated_client, abc123, session_factory):
    r = await unauthenticated_client.post("/api/v1/team-invites/accept", json={"token": "abc123"})
    assert r.status_code == 400
    assert r.json()["code"] == "account_required"

    [invite] = await _all(session_factory, Invitation)
    assert invite.accepted is False


@pytest.mark.asyncio
async def test_accept_with_incomplete_user_data(session_factory, mailer, abc123):
    async with session_factory() as s:
        with pytest.raises(InvalidInput):
            await InvitationService(s, mailer).accept_invitation(
                "abc123", NewUserData(name="Jane")
            )
    assert [u.email for u in await _all(session_factory, User)] == ["owner@example.com"]


@pytest.mark.asyncio
async def test_accept_short_password_creates_nothing(session_factory, mailer, abc123):
    async with session_factory() as s:
        with pytest.raises(InvalidInput):
            await InvitationService(s, mailer).accept_invitation(
                "abc123", NewUserData(name="Jane", password="123")
            )
    assert len(await _all(session_factory, User)) == 1
    assert await _all(session_factory, TeamMember) == []


@pytest.mark.asyncio
async def test_accept_existing_user_needs_no_data(session_factory, mailer, abc123):
    async with session_factory() as s:
        existing = await CredentialStore(s).register_password_user(
            "Nia", "new@co.com", "nia-secret"
        )
    async with session_factory() as s:
        member = await InvitationService(s, mailer).accept_invitation("abc123")
    assert member.user_id == existing.id
    assert member.name == "Nia"
    # No welcome mail for an account that already existed.
    assert mailer.outbox == []


@pytest.mark.asyncio
async def test_accept_when_already_member(session_factory, mailer, abc123, org, owner):
    async with session_factory() as s:
        await InvitationService(s, mailer).accept_invitation(
            "abc123", NewUserData(name="Jane", password="secret1")
        )
        # A second invitation for the same person slipped in directly.
        await InvitationStore(s).add(email="new@co.com", org_id=org.id, role="Clerk")
        await s.commit()

    [pending] = [i for i in await _all(session_factory, Invitation) if not i.accepted]
    async with session_factory() as s:
        with pytest.raises(AlreadyMember):
            await InvitationService(s, mailer).accept_invitation(pending.token)

    assert len(await _all(session_factory, TeamMember)) == 1
    still_pending = [i for i in await _all(session_factory, Invitation) if not i.accepted]
    assert len(still_pending) == 1


@pytest.mark.asyncio
async def test_accept_expired_invitation(session_factory, mailer, abc123):
    async with session_factory() as s:
        await s.execute(update(Invitation).values(expires_at=utcnow() - timedelta(seconds=1)))
        await s.commit()

    async with session_factory() as s:
        with pytest.raises(InvalidOrExpiredInvitation):
            await InvitationService(s, mailer).accept_invitation(
                "abc123", NewUserData(name="Jane", password="secret1")
            )


@pytest.mark.asyncio
async def test_mark_accepted_flips_once(db_session, abc123):
    store = InvitationStore(db_session)
    assert await store.mark_accepted(abc123.id) is True
    assert await store.mark_accepted(abc123.id) is False
    await db_session.rollback()


@pytest.mark.asyncio
async def test_welcome_failure_does_not_undo_acceptance(session_factory, abc123):
    failing = RecordingEmailService(mode="fail")
    async with session_factory() as s:
        member = await InvitationService(s, failing).accept_invitation(
            "abc123", NewUserData(name="Jane", password="secret1")
        )
    assert member.email == "new@co.com"
    [invite] = await _all(session_factory, Invitation)
    assert invite.accepted is True


@pytest.mark.asyncio
async def test_acceptance_events(session_factory, mailer, abc123):
    async with session_factory() as s:
        await InvitationService(s, mailer).accept_invitation(
            "abc123", NewUserData(name="Jane", password="secret1")
        )
    assert await _event_count(session_factory, "invitation.accepted") == 1
    assert await _event_count(session_factory, "member.added") == 1
    assert await _event_count(session_factory, "user.registered") == 2


@pytest.mark.asyncio
async def test_invite_with_unknown_permission(client, org, session_factory):
    r = await client.post(
        "/api/v1/team-invites",
        json={
            "email": "p@example.com",
            "org_id": str(org.id),
            "role": "Clerk",
            "permissions": ["view_expenses", "launch_rockets"],
        },
    )
    assert r.status_code == 400
    assert r.json() == {"detail": "Unknown permissions: launch_rockets", "code": "invalid_input"}
    assert await _all(session_factory, Invitation) == []


# ═══════════════════════════════════════════════════════════
# Racing acceptances
# ═══════════════════════════════════════════════════════════


def _accept_on_own_session(session_factory, mailer, token="abc123"):
    async def accept():
        async with session_factory() as s:
            return await InvitationService(s, mailer).accept_invitation(
                token, NewUserData(name="Jane", password="secret1")
            )

    return accept


class _RivalBeforeInsert(CredentialStore):
    """Runs a rival on another session just before inserting the new user."""

    def __init__(self, db, rival):
        super().__init__(db)
        self.rival = rival

    async def add_password_user(self, name, email, password):
        await self.rival()
        return await super().add_password_user(name, email, password)


class _RivalAcceptsFirst(InvitationService):
    """Lets a full acceptance of the same token commit before resolving ours."""

    def __init__(self, db, email, rival):
        super().__init__(db, email)
        self.rival = rival

    async def _resolve_invitee(self, invite, new_user):
        await self.rival()
        return await super()._resolve_invitee(invite, new_user)


@pytest.mark.asyncio
async def test_lost_account_race_to_concurrent_acceptance(session_factory, mailer, abc123):
    async with session_factory() as s:
        svc = InvitationService(s, mailer)
        svc.credentials = _RivalBeforeInsert(s, _accept_on_own_session(session_factory, mailer))
        with pytest.raises(InvalidOrExpiredInvitation):
            await svc.accept_invitation("abc123", NewUserData(name="Jay", password="secret2"))

    [member] = await _all(session_factory, TeamMember)
    assert member.name == "Jane"
    assert len([u for u in await _all(session_factory, User) if u.email == "new@co.com"]) == 1


@pytest.mark.asyncio
async def test_lost_account_race_to_plain_registration(session_factory, mailer, abc123):
    async def register():
        async with session_factory() as s:
            await CredentialStore(s).register_password_user("Nia", "new@co.com", "nia-secret")

    async with session_factory() as s:
        svc = InvitationService(s, mailer)
        svc.credentials = _RivalBeforeInsert(s, register)
        with pytest.raises(AccountRequired) as exc:
            await svc.accept_invitation("abc123", NewUserData(name="Jay", password="secret2"))
    assert "already exists" in exc.value.message

    # Nothing half-done: the invitation is still open for Nia to accept.
    assert await _all(session_factory, TeamMember) == []
    [invite] = await _all(session_factory, Invitation)
    assert invite.accepted is False

    async with session_factory() as s:
        member = await InvitationService(s, mailer).accept_invitation("abc123")
    assert member.name == "Nia"


@pytest.mark.asyncio
async def test_membership_race_reports_already_member(session_factory, mailer, abc123):
    async with session_factory() as s:
        svc = _RivalAcceptsFirst(s, mailer, _accept_on_own_session(session_factory, mailer))
        with pytest.raises(AlreadyMember):
            await svc.accept_invitation("abc123", NewUserData(name="Jane", password="secret1"))

    assert len(await _all(session_factory, TeamMember)) == 1
    assert await _event_count(session_factory, "invitation.accepted") == 1
    assert await _event_count(session_factory, "member.added") == 1


@pytest.mark.asyncio
async def test_parallel_acceptances_yield_one_membership(session_factory, mailer, abc123):
    accept = _accept_on_own_session(session_factory, mailer)
    results = await asyncio.gather(*(accept() for _ in range(3)), return_exceptions=True)

    winners = [r for r in results if isinstance(r, TeamMember)]
    losers = [r for r in results if not isinstance(r, TeamMember)]
    assert len(winners) == 1
    assert len(losers) == 2
    assert all(isinstance(e, (InvalidOrExpiredInvitation, AlreadyMember)) for e in losers)

    assert len(await _all(session_factory, TeamMember)) == 1
    assert len([u for u in await _all(session_factory, User) if u.email == "new@co.com"]) == 1
