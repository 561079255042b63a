"""Identity tables: users, reset tokens, organizations, invitations, members, events

Learn: The single-use rules live here as partial unique indexes, so they
hold no matter which process writes:
- uq_reset_tokens_active_user: one unconsumed reset token per user
- uq_invitations_pending_email_org: one pending invitation per email per org
- uq_team_members_active_org_user: one active membership per user per org

Revision ID: 3f1c9a2b7d40
Revises:
Create Date: 2026-10-18 09:12:04.118230
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a2b7d40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _where(predicate: str) -> dict:
    return {
        "postgresql_where": sa.text(predicate),
        "sqlite_where": sa.text(predicate),
    }


def upgrade() -> None:
    # ─── Users ───────────────────────────────────────────
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('image', sa.String(length=1024), nullable=True),
        sa.Column('email_verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('auth_method', sa.String(length=20), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=True),
        sa.Column('provider_subject', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('provider', 'provider_subject', name='uq_users_provider_subject'),
    )

    # ─── Password reset tokens ───────────────────────────
    op.create_table(
        'password_reset_tokens',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('token', sa.String(length=128), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consumed', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token'),
    )
    op.create_index(
        'uq_reset_tokens_active_user', 'password_reset_tokens', ['user_id'],
        unique=True, **_where('NOT consumed'),
    )
    op.create_index('idx_reset_tokens_expires', 'password_reset_tokens', ['expires_at'])

    # ─── Organizations ───────────────────────────────────
    op.create_table(
        'organizations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('industry', sa.String(length=100), nullable=True),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    # ─── Invitations ─────────────────────────────────────
    op.create_table(
        'team_invitations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('token', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('org_id', sa.Uuid(), nullable=False),
        sa.Column('inviter_id', sa.Uuid(), nullable=True),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('department', sa.String(length=50), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('accepted', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['inviter_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token'),
    )
    op.create_index(
        'uq_invitations_pending_email_org', 'team_invitations', ['email', 'org_id'],
        unique=True, **_where('NOT accepted'),
    )
    op.create_index('idx_invitations_inviter', 'team_invitations', ['inviter_id'])
    op.create_index('idx_invitations_expires', 'team_invitations', ['expires_at'])

    # ─── Memberships ─────────────────────────────────────
    op.create_table(
        'team_members',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('org_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('department', sa.String(length=50), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'uq_team_members_active_org_user', 'team_members', ['org_id', 'user_id'],
        unique=True, **_where('is_active'),
    )
    op.create_index('idx_team_members_user', 'team_members', ['user_id'])

    # ─── Audit trail ─────────────────────────────────────
    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('stream_id', sa.String(length=200), nullable=False),
        sa.Column('type', sa.String(length=100), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_events_stream', 'events', ['stream_id', 'id'])
    op.create_index('idx_events_type', 'events', ['type'])
    op.create_index('idx_events_created', 'events', ['created_at'])


def downgrade() -> None:
    op.drop_index('idx_events_created', table_name='events')
    op.drop_index('idx_events_type', table_name='events')
    op.drop_index('idx_events_stream', table_name='events')
    op.drop_table('events')
    op.drop_index('idx_team_members_user', table_name='team_members')
    op.drop_index('uq_team_members_active_org_user', table_name='team_members')
    op.drop_table('team_members')
    op.drop_index('idx_invitations_expires', table_name='team_invitations')
    op.drop_index('idx_invitations_inviter', table_name='team_invitations')
    op.drop_index('uq_invitations_pending_email_org', table_name='team_invitations')
    op.drop_table('team_invitations')
    op.drop_table('organizations')
    op.drop_index('idx_reset_tokens_expires', table_name='password_reset_tokens')
    op.drop_index('uq_reset_tokens_active_user', table_name='password_reset_tokens')
    op.drop_table('password_reset_tokens')
    op.drop_table('users')
