"""Typed exceptions for credential-lifecycle failures.

Flows raise these; AuthService turns them into the response envelope at its
boundary. Each class carries the machine code, the HTTP status the API layer
should use, and a default user-facing message. `data` holds any extra fields
the client needs (field-level validation messages, the email to route to the
verify screen, ...).
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class for authentication and verification errors."""

    code = "AUTH_ERROR"
    status_code = 400
    default_message = "Authentication error"

    def __init__(self, message: str | None = None, data: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.data = dict(data or {})
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class InvalidInput(AuthError):
    """A required field is missing or malformed."""

    code = "INVALID_INPUT"
    default_message = "Invalid input"


class InvalidEmail(AuthError):
    code = "INVALID_EMAIL"
    default_message = "Please provide a valid email"


class WeakPassword(AuthError):
    """Password policy violation. data["errors"] lists every failed rule."""

    code = "WEAK_PASSWORD"
    default_message = "Password validation failed"


# ---------------------------------------------------------------------------
# Account state
# ---------------------------------------------------------------------------


class DuplicateEmail(AuthError):
    """Email already registered as a Buyer or a Vendor."""

    code = "DUPLICATE_EMAIL"
    status_code = 409
    default_message = "Email already in use"


class NotFound(AuthError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "No account found with this email"


class AlreadyVerified(AuthError):
    code = "ALREADY_VERIFIED"
    default_message = "Your account is already verified. You can proceed to login."


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    """
    Unknown email or wrong password.

    Deliberately one class for both cases: callers must never be able to tell
    which of the two happened.
    """

    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid email or password"


class VerificationRequired(AuthError):
    """Password was correct but the email is not verified yet.

    A fresh verification code has already been dispatched when this is raised.
    """

    code = "VERIFICATION_REQUIRED"
    status_code = 403
    default_message = (
        "Please verify your email before logging in. A new verification code has been sent to your email."
    )


# ---------------------------------------------------------------------------
# One-time codes and tokens
# ---------------------------------------------------------------------------


class NoPendingToken(AuthError):
    code = "NO_PENDING_TOKEN"
    default_message = "No verification code found. Please request a new one."


class CodeMismatch(AuthError):
    code = "CODE_MISMATCH"
    default_message = "Invalid verification code"


class CodeExpired(AuthError):
    code = "CODE_EXPIRED"
    default_message = "Verification code has expired"


class InvalidRequest(AuthError):
    """Reset OTP submitted for an unknown email or with no reset in progress."""

    code = "INVALID_REQUEST"
    default_message = "Invalid request"


class InvalidOrExpired(AuthError):
    """Reset OTP mismatch or expiry."""

    code = "INVALID_OR_EXPIRED"
    default_message = "Invalid or expired code"


class InvalidOrExpiredToken(AuthError):
    """
    Reset token or session token is invalid, expired, or already used.

    Used for both reset tokens and session tokens.
    """

    code = "INVALID_OR_EXPIRED_TOKEN"
    status_code = 401
    default_message = "Invalid or expired token"


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class EmailDispatchFailed(AuthError):
    """
    The email gateway rejected or never received a message.

    Non-fatal: flows catch this, keep the committed state, and report a
    *_EMAIL_FAILED success code instead.
    """

    code = "EMAIL_DISPATCH_FAILED"
    status_code = 502
    default_message = "Failed to send email"


class StoreUnavailable(AuthError):
    """The credential store failed. Detail is only exposed in debug mode."""

    code = "STORE_UNAVAILABLE"
    status_code = 500
    default_message = "Unknown server error occurred"
