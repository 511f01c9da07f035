"""
auth/service.py -- The operation surface: every flow, wrapped in the response envelope.

Every public method takes plain values and returns an Envelope:

    {"success": bool, "message": str, "data": {...}}

on success and failure alike. Flows raise AuthError subclasses; _run() is the
single boundary that turns them (and any unexpected exception) into an
envelope. Nothing below this layer knows about envelopes or HTTP statuses,
and nothing above it needs try/except.

Failure data always carries {"code": <machine code>} plus whatever fields
the error attached. Success data carries a code wherever a caller must tell
outcomes apart (SIGNUP_SUCCESS vs SIGNUP_SUCCESS_EMAIL_FAILED, ...).

Security:
  StoreUnavailable is returned for any store or programming error with a
  generic message. Exception detail is added to data only in debug mode.

  public_profile() is the only projection of a Principal that leaves this
  module. It never includes the password hash or any token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from auth.authenticator import Authenticator
from auth.exceptions import AuthError, StoreUnavailable
from auth.models import Principal, PrincipalType
from auth.password_reset import PasswordResetService
from auth.store import CredentialStore
from auth.tokens import PasswordHasher, SessionTokenSigner
from auth.verification import VerificationService
from core.config import Settings
from notify.mailer import EmailSender, build_email_sender
from notify.notifier import AuthNotifier

logger = logging.getLogger("bidbuy.auth")

# Identical for every forgot_password() call, whatever the email.
FORGOT_PASSWORD_MESSAGE = "If an account exists with this email, a password reset code has been sent."


@dataclass
class Envelope:
    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    status_code: int = 200

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message, "data": self.data}


def public_profile(principal: Principal) -> dict[str, Any]:
    """Client-safe projection of a principal. No secrets."""
    return {
        "id": principal.id,
        "name": principal.name,
        "email": principal.email,
        "role": principal.role,
        "isVerified": principal.is_verified,
        "status": principal.status.value,
        "phoneNumber": principal.phone_number,
        "state": principal.state,
        "country": principal.country,
        "address": principal.address,
        "provider": principal.provider,
        "createdAt": principal.created_at,
        "lastLogin": principal.last_login,
    }


class AuthService:
    """Assembly of the store, mailer and the three flows.

    Usage:
        service = AuthService.from_settings(get_settings())
        envelope = service.signup("buyer", name="Ada", email="a@x.com", password="Abc12345!")
        return JSONResponse(envelope.to_dict(), status_code=envelope.status_code)
    """

    def __init__(
        self,
        settings: Settings,
        store: CredentialStore,
        verification: VerificationService,
        authenticator: Authenticator,
        password_reset: PasswordResetService,
    ) -> None:
        self.settings = settings
        self.store = store
        self.verification = verification
        self.authenticator = authenticator
        self.password_reset = password_reset

    @classmethod
    def from_settings(cls, settings: Settings, email_sender: EmailSender | None = None) -> "AuthService":
        """Build every component from settings.

        email_sender overrides the transport build_email_sender() would pick;
        tests pass a recording sender here.
        """
        store = CredentialStore(PasswordHasher(settings.bcrypt_rounds), settings.database_url)
        notifier = AuthNotifier(email_sender or build_email_sender(settings), settings)
        signer = SessionTokenSigner(settings.secret_key, settings.token_expire_seconds)
        verification = VerificationService(settings, store, notifier)
        return cls(
            settings=settings,
            store=store,
            verification=verification,
            authenticator=Authenticator(store, signer, verification),
            password_reset=PasswordResetService(settings, store, notifier),
        )

    def close(self) -> None:
        self.store.close()

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def signup(
        self,
        principal_type: PrincipalType | str,
        name: str | None = None,
        email: str | None = None,
        password: str | None = None,
        phone_number: str | None = None,
        state: str | None = None,
        country: str | None = None,
        address: str | None = None,
    ) -> Envelope:
        def op() -> Envelope:
            result = self.verification.signup(
                principal_type, name, email, password, phone_number, state, country, address
            )
            data = {"user": public_profile(result.principal), "email": result.principal.email}
            if result.email_sent:
                return _ok("Verification code sent to your email", "SIGNUP_SUCCESS", data, 201)
            return _ok(
                "Account created, but failed to send verification email. Please request a new code.",
                "SIGNUP_SUCCESS_EMAIL_FAILED",
                data,
                201,
            )

        return self._run("signup", op)

    def verify_email(
        self, principal_type: PrincipalType | str, email: str | None = None, otp: str | int | None = None
    ) -> Envelope:
        def op() -> Envelope:
            result = self.verification.verify_email(principal_type, email, otp)
            data = {"user": public_profile(result.principal)}
            if result.already_verified:
                return _ok("Your account is already verified. You can proceed to login.", "ALREADY_VERIFIED", data)
            return _ok("Email verified successfully! You can now log in to your account.", "EMAIL_VERIFIED", data)

        return self._run("verify_email", op)

    def resend_verification(self, principal_type: PrincipalType | str, email: str | None = None) -> Envelope:
        def op() -> Envelope:
            result = self.verification.resend_verification(principal_type, email)
            data = {"email": result.principal.email}
            if result.email_sent:
                return _ok("A new verification code has been sent to your email", "VERIFICATION_RESENT", data)
            return _ok(
                "A new verification code was generated, but the email could not be sent",
                "VERIFICATION_RESENT_EMAIL_FAILED",
                data,
            )

        return self._run("resend_verification", op)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def login(self, email: str | None = None, password: str | None = None) -> Envelope:
        def op() -> Envelope:
            result = self.authenticator.login(email, password)
            return _ok(
                "Login successful",
                "LOGIN_SUCCESS",
                {"token": result.token, "user": public_profile(result.principal)},
            )

        return self._run("login", op)

    def me(self, token: str | None) -> Envelope:
        def op() -> Envelope:
            principal = self.authenticator.resolve_session(token)
            return _ok("Authenticated", "AUTHENTICATED", {"user": public_profile(principal)})

        return self._run("me", op)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str | None = None) -> Envelope:
        def op() -> Envelope:
            self.password_reset.forgot_password(email)
            return _ok(FORGOT_PASSWORD_MESSAGE, "PASSWORD_RESET_REQUESTED", {})

        return self._run("forgot_password", op)

    def verify_reset_otp(self, email: str | None = None, otp: str | int | None = None) -> Envelope:
        def op() -> Envelope:
            reset = self.password_reset.verify_reset_otp(email, otp)
            return _ok(
                "Code verified. You can now reset your password.",
                "RESET_OTP_VERIFIED",
                {"resetToken": reset.token, "expiresIn": reset.expires_in},
            )

        return self._run("verify_reset_otp", op)

    def reset_password(self, reset_token: str | None = None, new_password: str | None = None) -> Envelope:
        def op() -> Envelope:
            self.password_reset.reset_password(reset_token, new_password)
            return _ok(
                "Password has been reset successfully. You can now log in with your new password.",
                "PASSWORD_RESET",
                {},
            )

        return self._run("reset_password", op)

    # ------------------------------------------------------------------
    # Error boundary
    # ------------------------------------------------------------------

    def _run(self, operation: str, op: Callable[[], Envelope]) -> Envelope:
        try:
            return op()
        except AuthError as exc:
            logger.info("%s failed: %s", operation, exc.code)
            return failure(exc)
        except SQLAlchemyError as exc:
            logger.exception("%s: credential store error", operation)
            return self._unavailable(exc)
        except Exception as exc:
            logger.exception("%s: unexpected error", operation)
            return self._unavailable(exc)

    def _unavailable(self, exc: Exception) -> Envelope:
        data = {"error": str(exc)} if self.settings.debug else None
        return failure(StoreUnavailable(data=data))


def failure(exc: AuthError) -> Envelope:
    """Envelope for an AuthError."""
    return Envelope(
        success=False,
        message=exc.message,
        data={"code": exc.code, **exc.data},
        status_code=exc.status_code,
    )


def _ok(message: str, code: str, data: dict[str, Any], status_code: int = 200) -> Envelope:
    return Envelope(success=True, message=message, data={"code": code, **data}, status_code=status_code)
