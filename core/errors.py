"""
core/errors.py -- Exception taxonomy shared by every layer.

Route-facing mapping (installed in api/main.py):
  Unauthenticated / InvalidTokenError -> 401 (same body for both)
  Forbidden                           -> 403
  UserNotFoundError                   -> 404
  StorageError                        -> 500 (generic message, detail logged only)

Audit write failures have no class: the audit logger logs and swallows its own
insert errors, so nothing propagates to the operation being audited.
"""


class NetInvError(Exception):
    """Base class for all service errors."""


class AuthError(NetInvError):
    """Authentication or authorization rejection. Terminal for the request."""


class Unauthenticated(AuthError):
    """No credential, or one that could not be parsed."""

    def __init__(self, message: str = "Authentication required.") -> None:
        super().__init__(message)


class InvalidTokenError(Unauthenticated):
    """Signature mismatch, malformed payload or expired token.

    Subclasses Unauthenticated so the boundary maps both to the same 401.
    The reason is kept on the exception for server logs only.
    """

    def __init__(self, reason: str = "invalid token") -> None:
        super().__init__("Authentication required.")
        self.reason = reason


class Forbidden(AuthError):
    """Authenticated, but the role or permission does not allow the action."""

    def __init__(self, message: str = "Insufficient permissions.") -> None:
        super().__init__(message)


class UserNotFoundError(NetInvError):
    """Resolver invoked for a user id that is absent or deactivated."""

    def __init__(self, user_id) -> None:
        super().__init__(f"User {user_id!r} not found or inactive.")
        self.user_id = user_id


class StorageError(NetInvError):
    """Any failure inside the storage collaborator."""


class HashingError(NetInvError):
    """Internal fault in the password hashing library."""
