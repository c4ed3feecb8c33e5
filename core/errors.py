"""
core/errors.py -- Typed error taxonomy for identity operations.

Every failure the facade reports is one of these classes. Each carries a
stable machine-readable code and a human message; to_dict() produces the
same {"code", "message"} shape the HTTP layer puts in its error bodies.

The HTTP layer owns the mapping to status codes. A suggested mapping:
  ValidationError       -> 400
  AuthenticationError   -> 401
  NotFoundError         -> 404
  ConflictError         -> 409 (or 400 for legacy clients)
  ExpiredTokenError     -> 400
  ExternalServiceError  -> 502
  PersistenceError      -> 500

Layer rule: core/ is the kernel. This module may not import from identity/.
"""

from __future__ import annotations


class IdentityError(Exception):
    """Base class for all reported identity failures."""

    code = "error"
    default_message = "An error occurred."

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(IdentityError):
    """Malformed or missing input. Never retried."""

    code = "bad_request"
    default_message = "The request is invalid."


class AuthenticationError(IdentityError):
    """Bad credentials or inactive account.

    The message is deliberately generic: "no such user" and "wrong password"
    must be indistinguishable to the caller.
    """

    code = "unauthorized"
    default_message = "Invalid email address or password."


class NotFoundError(IdentityError):
    code = "not_found"
    default_message = "Not found."


class ConflictError(IdentityError):
    """The request contradicts existing account state."""

    code = "conflict"
    default_message = "The request conflicts with an existing account."


class ExpiredTokenError(IdentityError):
    code = "token_expired"
    default_message = "The token has expired."


class ExternalServiceError(IdentityError):
    """An identity provider call failed. The cause is logged where it happened."""

    code = "external_service"
    default_message = "Unable to get user info."


class PersistenceError(IdentityError):
    """The repository could not complete a read or write.

    critical=True marks failures that must page someone (e.g. signup could
    not save a brand-new account).
    """

    code = "persistence"
    default_message = "An error occurred."

    def __init__(self, message: str | None = None, code: str | None = None, critical: bool = False) -> None:
        super().__init__(message, code)
        self.critical = critical
