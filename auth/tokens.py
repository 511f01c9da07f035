"""
auth/tokens.py -- Password hashing, one-time codes, reset tokens, session JWTs.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper) with a configurable cost
       factor. PasswordHasher keeps a dummy hash at the same cost so a login
       for an unknown email still pays for one bcrypt comparison -- response
       time does not reveal whether the account exists.

  OTPs: 6 digits, uniform over [100000, 999999], drawn from the secrets
       module (CSPRNG). OTPs are short-lived and single-use; the email OTP is
       kept in plaintext for string comparison, the reset OTP is stored as a
       SHA-256 digest only.

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. Only the
       SHA-256 digest is persisted; the plaintext leaves the service exactly
       once, in the verify-reset-otp response. bcrypt's intentional slowness
       is unnecessary for high-entropy secrets and would rule out lookup by
       digest.

  Session tokens: python-jose HS256. Claims carry principal id, display name
       and role plus iat/nbf/exp. verify() raises InvalidOrExpiredToken on
       any failure (bad signature, expired, not yet valid, missing claims).

Nothing here reads configuration at import time: the hasher and signer are
constructed with explicit values by the application assembly.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any

import bcrypt
from jose import JWTError, jwt

from auth.exceptions import InvalidOrExpiredToken
from core.clock import now_utc

logger = logging.getLogger("bidbuy.auth")

_ALGORITHM = "HS256"

OTP_MIN = 100000
OTP_SPAN = 900000  # OTP_MIN + OTP_SPAN - 1 == 999999


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


class PasswordHasher:
    """bcrypt hash/verify at a fixed cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the plaintext password.

        Callers enforce the 72-byte bcrypt limit through the password policy
        (auth.validators) before reaching this point.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext matches. Never raises.

        A None hash (federated principal, or unknown email) still runs bcrypt
        against the dummy hash and returns False.
        """
        if hashed is None:
            self.burn(plain)
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def burn(self, plain: str) -> None:
        """Run one bcrypt comparison against the dummy hash. Timing equalization."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("bidbuy_timing_dummy")
        try:
            bcrypt.checkpw(plain.encode("utf-8")[:72], self._dummy_hash.encode("utf-8"))
        except ValueError:
            pass


# ---------------------------------------------------------------------------
# One-time codes and reset tokens
# ---------------------------------------------------------------------------


def generate_otp() -> str:
    """Return a fresh 6-digit numeric code as a string."""
    return str(OTP_MIN + secrets.randbelow(OTP_SPAN))


def generate_reset_token() -> str:
    """Return 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def digest_token(raw: str) -> str:
    """SHA-256 hex digest used to persist reset OTPs and reset tokens."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def digests_match(raw: str, stored_digest: str | None) -> bool:
    """Constant-time comparison of digest_token(raw) against a stored digest."""
    if not stored_digest:
        return False
    return hmac.compare_digest(digest_token(raw), stored_digest)


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


class SessionTokenSigner:
    """Sign and verify session JWTs.

    Usage:
        signer = SessionTokenSigner(settings.secret_key, settings.token_expire_seconds)
        token = signer.sign({"id": principal.id, "name": principal.name})
        claims = signer.verify(token)   # raises InvalidOrExpiredToken
    """

    REQUIRED_CLAIMS = ("id", "name")

    def __init__(self, secret_key: str, default_ttl_seconds: int = 24 * 3600) -> None:
        if not secret_key:
            raise ValueError("secret_key is required")
        self._secret_key = secret_key
        self.default_ttl_seconds = default_ttl_seconds

    def sign(self, claims: dict[str, Any], ttl_seconds: int | None = None, now: datetime | None = None) -> str:
        """Encode claims with iat/nbf/exp. ttl_seconds defaults to the configured session lifetime."""
        issued = now or now_utc()
        duration = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        payload = dict(claims)
        if "id" in payload and "sub" not in payload:
            payload["sub"] = str(payload["id"])
        payload.update(
            {
                "iat": issued,
                "nbf": issued,
                "exp": issued + timedelta(seconds=duration),
            }
        )
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> dict[str, Any]:
        """Decode and verify a session JWT. Fails closed.

        Raises:
            InvalidOrExpiredToken: bad signature, malformed token, expired,
                not yet valid, or a required claim is missing.
        """
        if not token:
            raise InvalidOrExpiredToken("Authentication required. Please login.")
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            logger.info("Session token rejected: %s", exc)
            raise InvalidOrExpiredToken("Invalid or expired session. Please login to continue.") from exc
        if any(claim not in payload for claim in self.REQUIRED_CLAIMS):
            raise InvalidOrExpiredToken("Invalid or expired session. Please login to continue.")
        return payload
