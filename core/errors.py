"""
core/errors.py -- Error taxonomy shared by every layer.

Each error carries a machine-readable code and the HTTP status the API layer
renders it with, so route handlers raise domain errors directly and the
exception handlers in api/main.py do the translation in one place.

External exposure rules:
  - Business-rule violations (Forbidden, InvalidOperation, AlreadyMember,
    DuplicateEmail, ...) carry a message specific enough to fix the request.
  - Every AuthenticationError is rendered as the same generic payload. The
    concrete subclass (InvalidToken / ExpiredToken / RevokedToken) is only
    visible in internal logs, to avoid giving callers an oracle.

Layer rule: core/ is the kernel. No imports from api/, auth/, teams/, or cache/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for every expected failure raised by teamauth."""

    code: str = "error"
    status_code: int = 400
    default_message: str = "Request failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    code = "validation_error"
    default_message = "Request validation failed."


class DuplicateEmail(AppError):
    code = "duplicate_email"
    default_message = "User with this email already exists."


class UserNotFound(AppError):
    code = "user_not_found"
    default_message = "User not found."


class TeamNotFound(AppError):
    code = "team_not_found"
    status_code = 404
    default_message = "Team not found."


class AlreadyMember(AppError):
    code = "already_member"
    default_message = "User is already a team member."


class InvalidRole(AppError):
    code = "invalid_role"
    default_message = "Cannot assign OWNER role. Each team can only have one owner."


class InvalidOperation(AppError):
    code = "invalid_operation"
    default_message = "Operation would violate a team role invariant."


class Forbidden(AppError):
    code = "forbidden"
    status_code = 403
    default_message = "You do not have permission to perform this action."


# ---------------------------------------------------------------------------
# Authentication failures -- all rendered identically to callers
# ---------------------------------------------------------------------------


class AuthenticationError(AppError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Authentication required."


class InvalidCredentials(AuthenticationError):
    """Wrong password, unknown email, or inactive account -- never distinguished."""

    code = "bad_credentials"
    default_message = "Invalid credentials."


class InvalidToken(AuthenticationError):
    default_message = "Invalid token."


class ExpiredToken(InvalidToken):
    default_message = "Token has expired."


class RevokedToken(InvalidToken):
    default_message = "Token has been revoked."


class CorruptCredential(AppError):
    """A stored password digest could not be parsed."""

    code = "internal_error"
    status_code = 500
    default_message = "Stored credential is malformed."


# ---------------------------------------------------------------------------
# Infrastructure failures
# ---------------------------------------------------------------------------


class InternalError(AppError):
    code = "internal_error"
    status_code = 500
    default_message = "An unexpected error occurred."


class RevocationStoreError(InternalError):
    """The revocation backend is unreachable or returned an error."""

    default_message = "Revocation store unavailable."
