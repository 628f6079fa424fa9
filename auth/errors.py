"""
auth/errors.py -- Closed taxonomy of authentication failures.

Every failure is a fresh exception instance carrying a stable error_code and
HTTP status_code as class attributes. Nothing mutates an error after it is
raised; per-failure context travels in `detail`, which is for the incident log
only and never rendered to a client.

Disclosure rules:
  - Policy violations (weak password, duplicate identifier, bad credentials,
    bad identifier) are safe to show to the user verbatim.
  - Every 403 variant renders the same generic message. A client must not be
    able to tell a bad signature from an expired token from a replay.
  - Storage, key and hashing failures render a generic server message.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all tokenward failures mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "bad_request"
    public_message: str = "The request could not be processed."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.detail = detail

    @property
    def client_message(self) -> str:
        """The only text about this failure that may cross the HTTP boundary."""
        if self.status_code == 403 or self.status_code >= 500:
            return self.public_message
        return self.message


# ---------------------------------------------------------------------------
# Policy violations -- safe to surface
# ---------------------------------------------------------------------------


class WeakPasswordError(AuthError):
    status_code = 400
    error_code = "weak_password"
    public_message = (
        "Password must be at least 8 characters long and contain a lowercase letter, "
        "an uppercase letter, a digit, and one of !@#$%^&*-+?"
    )


class InvalidIdentifierError(AuthError):
    status_code = 400
    error_code = "invalid_identifier"
    public_message = "Please enter a valid identifier."


class DuplicateIdentifierError(AuthError):
    status_code = 409
    error_code = "identifier_taken"
    public_message = "An account with this identifier already exists."


class InvalidCredentialsError(AuthError):
    """Wrong identifier or wrong password. The two are never distinguished."""

    status_code = 401
    error_code = "invalid_credentials"
    public_message = "Invalid identifier or password."


class MalformedHeaderError(AuthError):
    status_code = 401
    error_code = "malformed_authorization"
    public_message = "Malformed Authorization header."


# ---------------------------------------------------------------------------
# Verification failures -- one generic 403 for all of them
# ---------------------------------------------------------------------------


class _Forbidden(AuthError):
    status_code = 403
    error_code = "forbidden"
    public_message = "Access denied. Please log in again."


class InvalidTokenError(_Forbidden):
    """Signature, expiry, issuer, subject or audience check failed."""


class MissingOpaqueClaimError(InvalidTokenError):
    """Signature is valid but the token carries no opaque value."""


class InvalidOpaqueError(_Forbidden):
    """No active session: unknown user or the stored opaque value is null."""


class UnauthorizedAccessError(_Forbidden):
    """Presented opaque value does not match the stored one (possible replay)."""


# ---------------------------------------------------------------------------
# Infrastructure failures
# ---------------------------------------------------------------------------


class CorruptDigestError(AuthError):
    status_code = 500
    error_code = "server_error"
    public_message = "Something went wrong. Please try again in a little bit."


class KeyGenerationError(AuthError):
    status_code = 500
    error_code = "server_error"
    public_message = "Unable to initialize the RSA key pair."


class DatabaseError(AuthError):
    status_code = 503
    error_code = "database_unavailable"
    public_message = "The credential store is unavailable. Please try again later."


class ServerError(AuthError):
    status_code = 500
    error_code = "server_error"
    public_message = "Something went wrong. Please try again in a little bit."
