"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover all event types in the system.
"""

# ─── Identities ──────────────────────────────────────────

USER_REGISTERED = "user.registered"
USER_PROVIDER_LINKED = "user.provider_linked"
USER_SIGNED_IN = "user.signed_in"

# ─── Password reset ──────────────────────────────────────

PASSWORD_RESET_REQUESTED = "password_reset.requested"
PASSWORD_RESET_COMPLETED = "password_reset.completed"

# ─── Organizations + invitations ─────────────────────────

ORG_CREATED = "org.created"
INVITATION_CREATED = "invitation.created"
INVITATION_ACCEPTED = "invitation.accepted"
MEMBER_ADDED = "member.added"
MEMBER_UPDATED = "member.updated"
MEMBER_REMOVED = "member.removed"
