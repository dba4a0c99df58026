"""
auth/errors.py -- Rejection outcomes raised by the authentication core.

Every error is scoped to one request and maps to an HTTP status in api/main.py.
Messages are deliberately coarse: "unknown user" and "wrong password" are the
same AuthenticationFailed so responses cannot be used to enumerate accounts.

Never put a password, refresh token or signing key into a message.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base class for auth rejections.

    status_code and error_code are class defaults; a subclass overrides both,
    and an instance may override the message.
    """

    status_code: int = 401
    error_code: str = "unauthorized"
    default_message: str = "Unauthorized."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationFailed(AuthError):
    """Bad credentials, unknown user, missing tenant, or no local directory mapping."""

    error_code = "authentication_failed"
    default_message = "Authentication Failed."


class UserInactive(AuthError):
    error_code = "user_inactive"
    default_message = "User Not Active. Please contact the administrator."


class EmailNotConfirmed(AuthError):
    error_code = "email_not_confirmed"
    default_message = "E-Mail not confirmed."


class TenantInactive(AuthError):
    error_code = "tenant_inactive"
    default_message = "Tenant is not Active. Please contact the Application Administrator."


class TenantExpired(AuthError):
    error_code = "tenant_expired"
    default_message = "Tenant Validity Has Expired. Please contact the Application Administrator."


class InvalidRefreshToken(AuthError):
    """Refresh token mismatch, expiry, or lost a concurrent rotation."""

    error_code = "invalid_refresh_token"
    default_message = "Invalid Refresh Token."


class InvalidToken(AuthError):
    """Access token failed signature, algorithm or claim checks on decode."""

    error_code = "invalid_token"
    default_message = "Invalid Token."


class DirectoryUnavailable(AuthError):
    """The directory server could not be reached or timed out (503).

    Kept apart from AuthenticationFailed so operators can tell an outage
    from a bad login.
    """

    status_code = 503
    error_code = "directory_unavailable"
    default_message = "Directory service unavailable."


class RequestCancelled(AuthError):
    """The caller cancelled the request; no state was written."""

    status_code = 499
    error_code = "cancelled"
    default_message = "Request cancelled."


__all__ = [
    "AuthError",
    "AuthenticationFailed",
    "UserInactive",
    "EmailNotConfirmed",
    "TenantInactive",
    "TenantExpired",
    "InvalidRefreshToken",
    "InvalidToken",
    "DirectoryUnavailable",
    "RequestCancelled",
]
