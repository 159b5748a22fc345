"""Typed errors raised across the entitlement and moderation services."""

from __future__ import annotations


class MizanError(Exception):
    """Base class for errors surfaced to callers with a distinguishable kind."""

    kind: str = "storage_error"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MizanError):
    """Caller supplied malformed input, for example an empty reason."""

    kind = "validation_error"
    status_code = 400


class AuthorizationError(MizanError):
    """Caller lacks the capability; never says whether the target exists."""

    kind = "authorization_error"
    status_code = 403

    def __init__(self, message: str = "Not enough permissions") -> None:
        super().__init__(message)


class ForbiddenRevocation(MizanError):
    """Revocation is structurally disallowed because a paid subscription is live."""

    kind = "forbidden_revocation"
    status_code = 409


class NotFound(MizanError):
    kind = "not_found"
    status_code = 404


class ConflictError(MizanError):
    """A concurrent write changed the user's ledger; retry once with fresh state."""

    kind = "conflict"
    status_code = 409
