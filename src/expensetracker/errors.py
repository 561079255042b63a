"""Identity error taxonomy.

Learn: Services raise these; a single exception handler registered in
main.py turns them into JSON responses of the form
{"detail": <message>, "code": <code>}. Routes never build error
responses for these cases themselves.

`code` is the machine-checkable kind, `message` is for humans. Messages
on enumeration-sensitive paths are deliberately identical no matter
which check failed.
"""


class IdentityError(Exception):
    """Base class for every failure the identity subsystem reports."""

    code = "identity_error"
    status_code = 400
    default_message = "Request could not be completed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(IdentityError):
    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid credentials"


class DuplicateEmail(IdentityError):
    code = "duplicate_email"
    status_code = 409
    default_message = "User with this email already exists"


class InvalidOrExpiredToken(IdentityError):
    code = "invalid_or_expired_token"
    default_message = "Invalid or expired password reset token"


class InvalidOrExpiredInvitation(IdentityError):
    code = "invalid_or_expired_invitation"
    default_message = "Invalid or expired invitation"


class AccountRequired(IdentityError):
    code = "account_required"
    default_message = (
        "User account required. Please sign in to accept this invitation."
    )


class InvalidInput(IdentityError):
    code = "invalid_input"
    default_message = "Invalid input"


class AlreadyMember(IdentityError):
    code = "already_member"
    default_message = "You are already a member of this team"


class AccountLinkNotAllowed(IdentityError):
    code = "account_link_not_allowed"
    status_code = 403
    default_message = "This sign-in method cannot be linked to the existing account"


class NotFound(IdentityError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class DeliveryFailure(IdentityError):
    code = "delivery_failure"
    status_code = 500
    default_message = "Failed to send email. Please try again later."


class InternalError(IdentityError):
    code = "internal_error"
    status_code = 500
    default_message = "Internal server error"
