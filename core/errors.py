"""
core/errors.py -- Error taxonomy for the authentication core.

Every failure the auth core reports is one of the AuthError subclasses below.
Each class carries a stable machine-readable code and the HTTP status the API
layer maps it to, so api/main.py needs a single exception handler instead of
one per kind.

Propagation policy:
  NotFound / InvalidCredentials / AccountLocked / AlreadyExists / InvalidInput
      surface to the caller as distinct kinds (login and register forms show
      different text).
  InvalidToken is the only failure validate_token() ever raises. Signature,
      expiry, cache mismatch, inactive device and infrastructure failures all
      collapse into it, so a caller cannot learn which check failed.
  CacheUnavailable is raised by cache/ on any Redis failure. The validator
      converts it to InvalidToken; login and revocation let it surface (503).

Layer rule: core/ is the kernel. No imports from api/, auth/, or cache/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all auth-core failures."""

    code: str = "auth_error"
    status_code: int = 400
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(AuthError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid username or password."


class AccountLocked(AuthError):
    code = "account_locked"
    status_code = 403
    default_message = "Account is locked."


class AlreadyExists(AuthError):
    code = "already_exists"
    status_code = 409
    default_message = "Username or email already exists."


class InvalidInput(AuthError):
    """Input the auth core cannot store, such as a password bcrypt would reject."""

    code = "invalid_input"
    status_code = 422
    default_message = "Invalid input."


class InvalidToken(AuthError):
    """Any token validation failure. The message is deliberately generic."""

    code = "invalid_token"
    status_code = 401
    default_message = "Invalid or expired token."


class CacheUnavailable(AuthError):
    """The session cache could not be reached or returned garbage."""

    code = "cache_unavailable"
    status_code = 503
    default_message = "Session service temporarily unavailable."
