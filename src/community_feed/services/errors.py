"""Exception hierarchy for feed operations.

Every error carries a short user-facing ``message`` so the UI layer can show
a transient notice without inspecting the exception type.
"""

from __future__ import annotations

DEFAULT_AUTH_MESSAGE = "An unexpected error occurred. Please try again."

AUTH_ERROR_MESSAGES: dict[str, str] = {
    # Login
    "auth/invalid-credential": (
        "Invalid email or password. Please check your credentials and try again."
    ),
    "auth/user-not-found": "No account found with this email address.",
    "auth/wrong-password": "Incorrect password. Please try again.",
    "auth/invalid-email": "Please enter a valid email address.",
    "auth/user-disabled": "This account has been disabled. Please contact support.",
    "auth/too-many-requests": "Too many failed login attempts. Please try again later.",
    # Registration
    "auth/email-already-in-use": "An account with this email already exists. Please login instead.",
    "auth/weak-password": (
        "Password is too weak. Please use at least 6 characters with a mix of letters and numbers."
    ),
    "auth/operation-not-allowed": "Registration is currently disabled. Please contact support.",
    # Session
    "auth/login-required": "Please login to continue.",
    "auth/user-token-expired": "Your session has expired. Please login again.",
    # Password reset
    "auth/expired-action-code": "This reset link has expired. Please request a new one.",
    "auth/invalid-action-code": "This reset link is invalid. Please request a new one.",
    # Network
    "auth/network-request-failed": (
        "Network error. Please check your internet connection and try again."
    ),
    # Generic
    "auth/internal-error": "Something went wrong. Please try again.",
    "auth/invalid-api-key": "Configuration error. Please contact support.",
}


def auth_error_message(code: str | None) -> str:
    """Return the user-facing message for an auth error code."""
    if code is None:
        return DEFAULT_AUTH_MESSAGE
    return AUTH_ERROR_MESSAGES.get(code, DEFAULT_AUTH_MESSAGE)


class FeedError(RuntimeError):
    """Base exception raised for feed failures."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, detail: str | None = None, *, message: str | None = None) -> None:
        super().__init__(detail or message or self.default_message)
        self.message = message or self.default_message


class FeedValidationError(FeedError, ValueError):
    """Raised when input is rejected before any network call."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, message=detail)


class FeedPermissionError(FeedError, PermissionError):
    """Raised when the viewer may not mutate the target entity."""

    default_message = "You can only delete your own posts and comments."


class RemoteError(FeedError):
    """Base class for failures reported by a hosted backend."""


class DataStoreError(RemoteError):
    """Raised when a query, insert, update or delete fails."""

    default_message = "Could not reach the server. Please try again."


class BlobStoreError(RemoteError):
    """Raised when an upload fails."""

    default_message = "Could not upload the image. Please try again."


class AuthError(FeedError):
    """Raised for authentication failures, tagged with an ``auth/...`` code."""

    def __init__(self, code: str, detail: str | None = None) -> None:
        super().__init__(detail or code, message=auth_error_message(code))
        self.code = code


def user_message(exc: BaseException) -> str:
    """Return the transient message the UI should display for ``exc``."""
    if isinstance(exc, FeedError):
        return exc.message
    return FeedError.default_message
