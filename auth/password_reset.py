"""
auth/password_reset.py -- Forgot password: OTP, then reset token, then new password.

Three independent single-use secrets, each consumed by one conditional
UPDATE in the store:

  forgot_password    -> reset OTP (emailed; only its SHA-256 digest is stored)
  verify_reset_otp   -> reset token (returned once; only its digest is stored)
  reset_password     -> new bcrypt hash; the reset token is cleared

Security:
  forgot_password() gives no signal about account existence. It returns
  normally for unknown, malformed or missing emails, and the caller sends the
  same response in every case.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from auth.exceptions import (
    AuthError,
    EmailDispatchFailed,
    InvalidOrExpired,
    InvalidOrExpiredToken,
    InvalidRequest,
)
from auth.models import Principal
from auth.store import CredentialStore
from auth.tokens import digest_token, digests_match, generate_otp, generate_reset_token
from auth.validators import normalize_email, require, validate_email, validate_password
from core.clock import now_utc, to_epoch_ms
from core.config import Settings
from notify.notifier import AuthNotifier

logger = logging.getLogger("bidbuy.auth")


@dataclass
class ResetToken:
    token: str
    expires_in: int  # seconds


class PasswordResetService:
    def __init__(
        self,
        settings: Settings,
        store: CredentialStore,
        notifier: AuthNotifier,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._otp_ttl = timedelta(seconds=settings.reset_otp_ttl_seconds)
        self._token_ttl = timedelta(seconds=settings.reset_token_ttl_seconds)
        self._store = store
        self._notifier = notifier
        self._clock = clock

    def forgot_password(self, email: str | None) -> None:
        """Start a reset if the email belongs to anyone. Never reveals whether it does."""
        try:
            require(email=email)
            email = normalize_email(email)
            validate_email(email)
        except AuthError:
            return
        principal = self._store.find_any_by_email(email)
        if principal is None:
            logger.info("Password reset requested for unknown email")
            return

        otp = generate_otp()
        expires_ms = to_epoch_ms(self._clock() + self._otp_ttl)
        self._store.issue_reset_otp(principal.principal_type, principal.id, digest_token(otp), expires_ms)
        logger.info("Password reset OTP issued for %s %s", principal.principal_type.value, principal.id)
        try:
            self._notifier.send_password_reset(principal, otp)
        except EmailDispatchFailed:
            logger.warning("Password reset email to %s %s failed", principal.principal_type.value, principal.id)

    def verify_reset_otp(self, email: str | None, otp: str | int | None) -> ResetToken:
        """Exchange a valid reset OTP for a reset token.

        Raises:
            InvalidInput: email or otp missing.
            InvalidRequest: unknown email or no reset in progress.
            InvalidOrExpired: wrong code, expired code, or consumed concurrently.
        """
        require(email=email, otp=otp)
        principal = self._store.find_any_by_email(email)
        if principal is None or not principal.reset_otp_hash:
            raise InvalidRequest()

        supplied = str(otp).strip()
        now = self._clock()
        now_ms = to_epoch_ms(now)
        if not digests_match(supplied, principal.reset_otp_hash):
            logger.warning("Reset OTP mismatch for %s %s", principal.principal_type.value, principal.id)
            raise InvalidOrExpired()
        if principal.reset_otp_expires is None or principal.reset_otp_expires <= now_ms:
            raise InvalidOrExpired()

        token = generate_reset_token()
        if not self._store.consume_reset_otp(
            principal.principal_type,
            principal.id,
            principal.reset_otp_hash,
            now_ms,
            reset_token_hash=digest_token(token),
            reset_token_expires_ms=to_epoch_ms(now + self._token_ttl),
        ):
            raise InvalidOrExpired()
        logger.info("Reset OTP verified for %s %s", principal.principal_type.value, principal.id)
        return ResetToken(token=token, expires_in=int(self._token_ttl.total_seconds()))

    def reset_password(self, reset_token: str | None, new_password: str | None) -> Principal:
        """Set a new password for the holder of a live reset token.

        Raises:
            InvalidInput: a field is missing.
            WeakPassword: new password fails the policy.
            InvalidOrExpiredToken: no live reset token matches.
        """
        require(reset_token=reset_token, new_password=new_password)
        validate_password(new_password)
        principal = self._store.consume_reset_token(
            digest_token(reset_token.strip()), new_password, to_epoch_ms(self._clock())
        )
        if principal is None:
            raise InvalidOrExpiredToken()
        logger.info("Password reset for %s %s", principal.principal_type.value, principal.id)
        try:
            self._notifier.send_password_changed(principal)
        except EmailDispatchFailed:
            logger.warning("Password changed email to %s %s failed", principal.principal_type.value, principal.id)
        return principal
