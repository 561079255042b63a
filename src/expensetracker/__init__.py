"""ExpenseTracker — identity and credential lifecycle backend.

Password and third-party sign-in, account linking, the forgot/reset-password
flow, and team invitations that attach users to organizations.
"""

__version__ = "0.1.0"
