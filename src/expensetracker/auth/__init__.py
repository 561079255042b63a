"""Authentication: password hashing, session tokens, request identity.

Learn: Two proof mechanisms resolve to the same user row:
1. Users → email/password → JWT access/refresh tokens
2. Third-party sign-in → signed provider assertion → same JWT pair

Either way the session carries only the user's stable id as its subject
(plus display claims), and every request rebuilds a CurrentIdentity from it.
"""
