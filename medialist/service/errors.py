from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Every subclass pins an HTTP ``status_code`` and a stable ``error_code``;
    the API layer renders both through a single error formatter:
    - validation_error (400)
    - unauthenticated (400/401/403)
    - not_owner (400)
    - not_found (404)
    - conflict (400)
    - inconsistent_state (500)
    - server_error (500)
    - unavailable (503)
    """

    status_code: int = 500
    error_code: str = "server_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class InvalidType(ValidationError):
    """Search type outside {name, username}."""


class InvalidListType(ValidationError):
    """List type outside {statusBased, themeBased}."""


class FieldRestrictionError(ValidationError):
    """An item field that the list's type does not allow was patched."""


class AuthenticationError(ServiceError):
    """Caller identity could not be established (400)."""
    status_code = 400
    error_code = "unauthenticated"


class TokenMissingError(AuthenticationError):
    """No bearer token on a protected request (403)."""
    status_code = 403


class InvalidTokenError(AuthenticationError):
    """Token is malformed, expired, or carries a bad signature (401)."""
    status_code = 401


class SessionNotFoundError(AuthenticationError):
    """Token verified but no live session entry exists."""


class InvalidCredentials(AuthenticationError):
    """Password did not match at login."""


class RefreshTokenMismatchError(AuthenticationError):
    """Presented refresh token is not the one currently stored for the user."""


class AuthorizationError(ServiceError):
    """Identity is valid but does not own the resource (400)."""
    status_code = 400
    error_code = "not_owner"


class NotOwnedError(AuthorizationError):
    pass


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class UserNotFound(NotFoundError):
    pass


class ListNotFound(NotFoundError):
    pass


class ConflictError(ServiceError):
    """Duplicate identity or failed password re-verification (400)."""
    status_code = 400
    error_code = "conflict"


class DuplicateUsername(ConflictError):
    pass


class DuplicateEmail(ConflictError):
    pass


class IncorrectPassword(ConflictError):
    pass


class ConsistencyError(ServiceError):
    """A compensating step failed; user index and list store disagree (500)."""
    status_code = 500
    error_code = "inconsistent_state"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class CreationError(ServerError):
    """Persistence returned no record for a create call."""


class SigningError(ServerError):
    """Token signing secret unavailable."""


class ServiceUnavailableError(ServiceError):
    """Store or cache did not answer in time; safe to retry (503)."""
    status_code = 503
    error_code = "unavailable"


class StoreTimeoutError(ServiceUnavailableError):
    """A store call outlived its timeout while its worker thread kept running.

    ``pending`` resolves once that worker finishes, so callers can undo a
    write that landed after the request gave up on it.
    """

    def __init__(self, message: str, *, pending, detail: Optional[dict] = None) -> None:
        super().__init__(message, detail=detail)
        self.pending = pending


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidType",
    "InvalidListType",
    "FieldRestrictionError",
    "AuthenticationError",
    "TokenMissingError",
    "InvalidTokenError",
    "SessionNotFoundError",
    "InvalidCredentials",
    "RefreshTokenMismatchError",
    "AuthorizationError",
    "NotOwnedError",
    "NotFoundError",
    "UserNotFound",
    "ListNotFound",
    "ConflictError",
    "DuplicateUsername",
    "DuplicateEmail",
    "IncorrectPassword",
    "ConsistencyError",
    "ServerError",
    "CreationError",
    "SigningError",
    "ServiceUnavailableError",
    "StoreTimeoutError",
]
