"""
auth/authenticator.py -- Password login and session resolution.

Security:
  Unknown email and wrong password raise the same InvalidCredentials, and an
  unknown email still pays for one bcrypt comparison (PasswordHasher.burn),
  so neither the message nor the response time reveals whether an account
  exists.

  A correct password on an unverified account never yields a session. A fresh
  verification code is issued instead and VerificationRequired tells the
  client where to send the user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.exceptions import AlreadyVerified, InvalidCredentials, InvalidOrExpiredToken, VerificationRequired
from auth.models import Principal
from auth.store import CredentialStore
from auth.tokens import SessionTokenSigner
from auth.validators import normalize_email, require, validate_email
from auth.verification import VerificationService

logger = logging.getLogger("bidbuy.auth")


@dataclass
class LoginResult:
    token: str
    principal: Principal


class Authenticator:
    def __init__(
        self,
        store: CredentialStore,
        signer: SessionTokenSigner,
        verification: VerificationService,
    ) -> None:
        self._store = store
        self._signer = signer
        self._verification = verification

    def login(self, email: str | None, password: str | None) -> LoginResult:
        """Authenticate by email and password, Vendors searched before Buyers.

        Raises:
            InvalidInput, InvalidEmail: missing or malformed input.
            InvalidCredentials: unknown email, federated account, or wrong password.
            VerificationRequired: password correct but email not verified;
                a new code has been dispatched.
        """
        require(email=email, password=password)
        email = normalize_email(email)
        validate_email(email)

        principal = self._store.find_any_by_email(email)
        if principal is None:
            self._store.hasher.burn(password)
            logger.warning("Login failed: unknown email")
            raise InvalidCredentials()
        if not self._store.hasher.verify(password, principal.hashed_password):
            logger.warning("Login failed for %s %s", principal.principal_type.value, principal.id)
            raise InvalidCredentials()

        if not principal.is_verified and not self._verification.reconcile_legacy(principal):
            self._require_verification(principal)

        token = self._signer.sign({"id": principal.id, "name": principal.name, "role": principal.role})
        self._store.update_last_login(principal.principal_type, principal.id)
        logger.info("Login %s %s", principal.principal_type.value, principal.id)
        refreshed = self._store.find_by_id(principal.principal_type, principal.id)
        return LoginResult(token=token, principal=refreshed or principal)

    def resolve_session(self, token: str | None) -> Principal:
        """Return the principal a session token belongs to.

        Raises InvalidOrExpiredToken if the token fails verification or its
        principal no longer exists.
        """
        claims = self._signer.verify(token or "")
        principal = self._store.find_any_by_id(str(claims["id"]))
        if principal is None:
            raise InvalidOrExpiredToken("User not found. Please login again.")
        return principal

    def _require_verification(self, principal: Principal) -> None:
        try:
            email_sent = self._verification.issue_code(principal)
        except AlreadyVerified:
            # Verified between our read and the code write; let the login through.
            return
        logger.info("Login blocked pending verification for %s %s", principal.principal_type.value, principal.id)
        raise VerificationRequired(
            data={
                "requiresVerification": True,
                "email": principal.email,
                "role": principal.role,
                "emailSent": email_sent,
            }
        )
