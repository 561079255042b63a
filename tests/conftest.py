"""Test fixtures — a fresh database per test, real commits.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own engine and an empty schema (SQLite file in
   tmp_path via aiosqlite, or EXPENSETRACKER_TEST_DATABASE_URL to run the
   same suite against PostgreSQL).
2. Services commit for real. The single-use rules (one active reset
   token, accept-once invitations) depend on committed state and
   conditional UPDATEs, so savepoint-wrapped sessions would hide exactly
   what we want to test.
3. get_db is overridden to hand every request its own session from the
   test engine, the same shape as production.

Email never leaves the process: get_email_service returns a recording
EmailService whose transport step is replaced.
"""

import os

# Settings are read at import time: configure before importing the app.
os.environ["EXPENSETRACKER_ENVIRONMENT"] = "test"
os.environ["EXPENSETRACKER_BCRYPT_ROUNDS"] = "4"
os.environ["EXPENSETRACKER_RESEND_API_KEY"] = ""
os.environ["EXPENSETRACKER_DATABASE_URL"] = os.environ.get(
    "EXPENSETRACKER_TEST_DATABASE_URL", "sqlite+aiosqlite://"
)

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from expensetracker.auth.dependencies import CurrentIdentity, get_current_user  # noqa: E402
from expensetracker.db.engine import get_db  # noqa: E402
from expensetracker.db.models import Base  # noqa: E402
from expensetracker.main import app  # noqa: E402
from expensetracker.services.credential_store import CredentialStore  # noqa: E402
from expensetracker.services.email_service import (  # noqa: E402
    DeliveryResult,
    EmailService,
    get_email_service,
)
from expensetracker.services.team_service import TeamService  # noqa: E402


class RecordingEmailService(EmailService):
    """Builds real messages, records them instead of sending.

    mode: "logged" (no provider configured), "sent", or "fail".
    """

    def __init__(self, mode: str = "logged"):
        super().__init__()
        self.mode = mode
        self.outbox: list[dict] = []

    async def _send(self, to, subject, html, link=None) -> DeliveryResult:
        self.outbox.append({"to": to, "subject": subject, "html": html, "link": link})
        if self.mode == "fail":
            return DeliveryResult(success=False, message="provider down")
        if self.mode == "sent":
            return DeliveryResult(success=True, message="Email sent")
        return DeliveryResult(success=True, logged=True, message="logged", link=link)


@pytest_asyncio.fixture()
async def engine(tmp_path):
    url = os.environ.get(
        "EXPENSETRACKER_TEST_DATABASE_URL",
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
    )
    eng = create_async_engine(url, echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """Session for service-level tests and for inspecting what requests wrote."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def mailer():
    return RecordingEmailService()


@pytest_asyncio.fixture()
async def owner(db_session):
    """A registered password user who owns `org`."""
    return await CredentialStore(db_session).register_password_user(
        "Olivia Owner", "owner@example.com", "owner-pass-1"
    )


@pytest_asyncio.fixture()
async def org(db_session, owner):
    return await TeamService(db_session).create_org(owner.id, "Acme Ltd", "Retail")


def _override_common(session_factory, mailer):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_service] = lambda: mailer


@pytest_asyncio.fixture()
async def client(session_factory, mailer, owner):
    """HTTP client signed in as `owner` without minting real JWTs.

    Learn: We override get_current_user so protected routes see the owner's
    identity. Auth tests use unauthenticated_client to exercise real tokens.
    """
    _override_common(session_factory, mailer)
    app.dependency_overrides[get_current_user] = lambda: CurrentIdentity(
        user_id=str(owner.id), name=owner.name, email=owner.email
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauthenticated_client(session_factory, mailer):
    """HTTP client WITHOUT auth override: real bearer token handling."""
    _override_common(session_factory, mailer)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
