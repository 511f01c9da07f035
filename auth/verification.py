"""
auth/verification.py -- Email verification state machine for Buyers and Vendors.

States (VerificationState):

    unverified --issue code--> pending --correct, unexpired code--> verified
                                  |  ^
                                  +--+  resend / login re-issues (old code dies)

One implementation serves both principal types; the PrincipalType tag only
selects the store table.

Every transition is committed to the store before its email is dispatched.
A failed dispatch is reported (email_sent=False) and never undoes the
transition.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from auth.exceptions import (
    AlreadyVerified,
    CodeExpired,
    CodeMismatch,
    EmailDispatchFailed,
    NoPendingToken,
    NotFound,
)
from auth.models import LegacyStatus, Principal, PrincipalType, VerificationState
from auth.store import CredentialStore
from auth.tokens import generate_otp
from auth.validators import (
    normalize_email,
    parse_principal_type,
    require,
    validate_email,
    validate_name,
    validate_password,
    validate_phone,
)
from core.clock import now_utc, to_epoch_ms, to_iso
from core.config import Settings
from notify.notifier import AuthNotifier

logger = logging.getLogger("bidbuy.auth")


@dataclass
class SignupResult:
    principal: Principal
    email_sent: bool


@dataclass
class VerifyResult:
    principal: Principal
    already_verified: bool


@dataclass
class ResendResult:
    principal: Principal
    email_sent: bool


class VerificationService:
    """signup, verify_email, resend_verification, and the shared code issuer."""

    def __init__(
        self,
        settings: Settings,
        store: CredentialStore,
        notifier: AuthNotifier,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._otp_ttl = timedelta(seconds=settings.otp_ttl_seconds)
        self._store = store
        self._notifier = notifier
        self._clock = clock

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def signup(
        self,
        principal_type: PrincipalType | str,
        name: str | None,
        email: str | None,
        password: str | None,
        phone_number: str | None = None,
        state: str | None = None,
        country: str | None = None,
        address: str | None = None,
    ) -> SignupResult:
        """Create a pending principal and mail its first verification code.

        Raises:
            InvalidInput, InvalidEmail, WeakPassword: input policy.
            DuplicateEmail: email already registered as a Buyer or a Vendor.
        """
        principal_type = parse_principal_type(principal_type)
        require(name=name, email=email, password=password)
        email = normalize_email(email)
        validate_name(name)
        validate_email(email)
        validate_phone(phone_number)
        validate_password(password)

        otp = generate_otp()
        principal = self._store.insert(
            Principal(
                principal_type=principal_type,
                email=email,
                name=name,
                verification_state=VerificationState.pending,
                status=LegacyStatus.pending,
                email_token=otp,
                email_token_expires=self._expiry_ms(),
                phone_number=phone_number,
                state=state,
                country=country,
                address=address,
            ),
            password=password,
        )
        logger.info("Signup %s %s", principal_type.value, principal.id)
        return SignupResult(principal=principal, email_sent=self._dispatch(principal, otp))

    def verify_email(self, principal_type: PrincipalType | str, email: str | None, otp: str | int | None) -> VerifyResult:
        """Consume the pending email code.

        An already verified principal gets an idempotent result
        (already_verified=True) and nothing is written.

        Raises:
            NotFound: no principal of this type with this email.
            NoPendingToken: no code outstanding, or it was consumed concurrently.
            CodeMismatch: code differs from the stored one.
            CodeExpired: code matches but its expiry has passed.
        """
        principal_type = parse_principal_type(principal_type)
        require(email=email, otp=otp)
        principal = self._store.find_by_email(principal_type, email)
        if principal is None:
            raise NotFound()

        if self.reconcile_legacy(principal):
            return VerifyResult(principal=self._reload(principal), already_verified=True)
        if principal.is_verified:
            return VerifyResult(principal=principal, already_verified=True)

        if principal.email_token is None:
            raise NoPendingToken()
        supplied = str(otp).strip()
        if not hmac.compare_digest(principal.email_token.encode(), supplied.encode()):
            logger.warning("Verification code mismatch for %s %s", principal_type.value, principal.id)
            raise CodeMismatch()
        now_ms = to_epoch_ms(self._clock())
        if principal.email_token_expires is None or principal.email_token_expires <= now_ms:
            raise CodeExpired()

        if not self._store.consume_email_token(
            principal_type, principal.id, supplied, now_ms, verified_at=to_iso(self._clock())
        ):
            # Another request consumed or replaced the code between our read and write.
            raise NoPendingToken()
        logger.info("Email verified for %s %s", principal_type.value, principal.id)
        return VerifyResult(principal=self._reload(principal), already_verified=False)

    def resend_verification(self, principal_type: PrincipalType | str, email: str | None) -> ResendResult:
        """Replace any pending code with a fresh one and mail it.

        Raises:
            NotFound: no principal of this type with this email.
            AlreadyVerified: nothing to resend.
        """
        principal_type = parse_principal_type(principal_type)
        require(email=email)
        principal = self._store.find_by_email(principal_type, email)
        if principal is None:
            raise NotFound()
        if self.reconcile_legacy(principal) or principal.is_verified:
            raise AlreadyVerified()
        email_sent = self.issue_code(principal)
        return ResendResult(principal=self._reload(principal), email_sent=email_sent)

    # ------------------------------------------------------------------
    # Shared with the authenticator
    # ------------------------------------------------------------------

    def issue_code(self, principal: Principal) -> bool:
        """Store a fresh code for an unverified principal and mail it.

        The previous code stops matching as soon as the store write commits.
        Returns whether the email went out. If the principal became verified
        concurrently, nothing is issued and AlreadyVerified is raised.
        """
        otp = generate_otp()
        if not self._store.issue_email_token(principal.principal_type, principal.id, otp, self._expiry_ms()):
            raise AlreadyVerified()
        logger.info("Verification code issued for %s %s", principal.principal_type.value, principal.id)
        return self._dispatch(principal, otp)

    def reconcile_legacy(self, principal: Principal) -> bool:
        """Heal rows whose legacy status says completed but whose state lags.

        Only applies when no code is outstanding; a pending code means the
        legacy flag is the stale one. Returns True if the row was healed.
        """
        if principal.is_verified or principal.status is not LegacyStatus.completed or principal.email_token:
            return False
        self._store.mark_verified(principal.principal_type, principal.id)
        logger.info("Reconciled legacy verified status for %s %s", principal.principal_type.value, principal.id)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reload(self, principal: Principal) -> Principal:
        return self._store.find_by_id(principal.principal_type, principal.id) or principal

    def _expiry_ms(self) -> int:
        return to_epoch_ms(self._clock() + self._otp_ttl)

    def _dispatch(self, principal: Principal, otp: str) -> bool:
        try:
            self._notifier.send_verification(principal, otp)
        except EmailDispatchFailed:
            logger.warning("Verification email to %s %s failed", principal.principal_type.value, principal.id)
            return False
        return True
