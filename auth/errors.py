"""
auth/errors.py -- Typed failures raised by the auth core.

Every flow in auth/ surfaces failures as one of these exceptions. They carry
the HTTP status and a stable machine-readable code so the transport layer can
render them without inspecting the message. api/main.py registers a single
exception handler for AuthError.

Enumeration rule: login and refresh failures always use the default
Unauthorized message. Never put "user not found" vs "wrong password" detail
into an Unauthorized raised from a credential check.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all auth-core failures."""

    status_code: int = 500
    code: str = "auth_error"
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(AuthError):
    """Bad credentials, invalid/expired/revoked token, or inactive account."""

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class InvalidToken(Unauthorized):
    """Token failed signature, structure, type or expiry checks."""

    code = "invalid_token"
    default_message = "Invalid or expired token."


class Forbidden(AuthError):
    """Valid identity, but the role or the target of the action is not allowed."""

    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."


class BadRequest(AuthError):
    status_code = 400
    code = "bad_request"
    default_message = "Bad request."
