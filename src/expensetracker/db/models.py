"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Relationships, constraints, and indexes defined here.
Alembic auto-generates migrations by comparing these models to the actual DB.

Key concepts:
- UUID primary keys (better for distributed systems than auto-increment)
- Portable column types (Uuid, JSON) so the same schema runs on
  PostgreSQL in production and SQLite in tests
- Partial unique indexes carry the single-use invariants: one unconsumed
  reset token per user, one pending invitation per email per org, one active
  membership per user per org. Application code never check-then-acts on them.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    false,
    func,
    text,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def _where(predicate: str) -> dict:
    """Partial-index predicate for both supported dialects."""
    return {
        "postgresql_where": text(predicate),
        "sqlite_where": text(predicate),
    }


# Proof mechanisms
AUTH_CREDENTIALS = "credentials"
AUTH_THIRD_PARTY = "third_party"


# ══════════════════════════════════════════════════════════════
# Identities
# ══════════════════════════════════════════════════════════════


class User(Base):
    """A human identity, the unit of authentication.

    Learn: One row per person regardless of how they sign in. Email is
    stored lower-cased, so the plain unique index makes it unique
    case-insensitively. A password user who later signs in with a provider
    keeps the same row; the provider linkage is attached alongside the
    existing password hash.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint(
            "provider", "provider_subject", name="uq_users_provider_subject"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )  # nullable for third-party-only users
    image: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    email_verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    auth_method: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AUTH_CREDENTIALS
    )  # credentials, third_party
    provider: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True
    )  # google, github, ...
    provider_subject: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )


class PasswordResetToken(Base):
    """Single-use, time-bounded password reset secret.

    Learn: Consumed tokens stay behind (flagged) until their owner's next
    reset request purges them; only unconsumed rows count against the
    one-per-user index.
    """

    __tablename__ = "password_reset_tokens"
    __table_args__ = (
        Index(
            "uq_reset_tokens_active_user",
            "user_id",
            unique=True,
            **_where("NOT consumed"),
        ),
        Index("idx_reset_tokens_expires", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    consumed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    consumed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Organizations, invitations, memberships
# ══════════════════════════════════════════════════════════════


class Organization(Base):
    """A company whose expenses a team tracks together.

    Learn: The owner implicitly holds every permission; everyone else
    gets in through an accepted invitation (a TeamMember row).
    """

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    industry: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class Invitation(Base):
    """Single-use offer to join an organization with a given role."""

    __tablename__ = "team_invitations"
    __table_args__ = (
        Index(
            "uq_invitations_pending_email_org",
            "email",
            "org_id",
            unique=True,
            **_where("NOT accepted"),
        ),
        Index("idx_invitations_inviter", "inviter_id"),
        Index("idx_invitations_expires", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id"), nullable=False
    )
    inviter_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    department: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    permissions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    accepted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    accepted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class TeamMember(Base):
    """Membership: links a user to an organization with a role.

    Learn: name/email are copied from the user at join time so member
    lists render without a join. The partial unique index allows a user
    to be re-invited after being deactivated, but never to hold two
    active memberships in the same org.
    """

    __tablename__ = "team_members"
    __table_args__ = (
        Index(
            "uq_team_members_active_org_user",
            "org_id",
            "user_id",
            unique=True,
            **_where("is_active"),
        ),
        Index("idx_team_members_user", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    department: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    permissions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Audit trail
# ══════════════════════════════════════════════════════════════


class Event(Base):
    """Immutable audit log of identity state changes.

    Learn: Events are append-only (never updated/deleted) and written in
    the same transaction as the change they describe, so a rolled-back
    change leaves no event behind.

    stream_id examples: "user:<uuid>", "invitation:<uuid>", "org:<uuid>"
    type examples: "user.registered", "password_reset.completed"
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_stream", "stream_id", "id"),
        Index("idx_events_type", "type"),
        Index("idx_events_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    meta: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )  # actor_id, request_id
    # Note: Python attr is "meta" because "metadata" is reserved by SQLAlchemy.
    # DB column is still "metadata" via the first positional arg.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
