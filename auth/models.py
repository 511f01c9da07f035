"""
auth/models.py -- Domain dataclasses for marketplace principals.

Pattern: Data class (pure data container). Dataclasses own domain shape; the
store, the flows and the routes do the work.

Buyers and Vendors share one shape. The PrincipalType tag selects the table
the record lives in; there is no per-type subclass.

Layer rule: no imports from api/, notify/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PrincipalType(str, Enum):
    """Which side of the marketplace a principal belongs to."""

    vendor = "vendor"
    buyer = "buyer"


# Cross-table lookups (login, reset, session resolution) try vendors first.
SEARCH_ORDER: tuple[PrincipalType, ...] = (PrincipalType.vendor, PrincipalType.buyer)


class VerificationState(str, Enum):
    """Email verification state. Single source of truth for "is verified".

    unverified -- no email token outstanding
    pending    -- an email token has been issued and not yet consumed
    verified   -- email confirmed; email token is always absent
    """

    unverified = "unverified"
    pending = "pending"
    verified = "verified"


class LegacyStatus(str, Enum):
    """The older status column, kept in lockstep with VerificationState.

    Rows migrated from earlier deployments may carry status=completed while
    verification_state lags behind; login and verify reconcile them.
    """

    pending = "pending"
    completed = "completed"


@dataclass
class Principal:
    """A Buyer or Vendor account.

    hashed_password is None for federated (provider="google") accounts; those
    principals can never pass a password login.

    Expiry fields are epoch milliseconds so the store can compare them in SQL.
    Each secret pair (value, expiry) is either fully present or fully absent.
    The email token is stored in plaintext (it is mailed and string-compared);
    the reset OTP and reset token are stored as SHA-256 hex digests only.
    """

    principal_type: PrincipalType
    email: str
    name: str
    id: str | None = None
    hashed_password: str | None = None
    verification_state: VerificationState = VerificationState.unverified
    status: LegacyStatus = LegacyStatus.pending
    email_token: str | None = None
    email_token_expires: int | None = None
    reset_otp_hash: str | None = None
    reset_otp_expires: int | None = None
    reset_token_hash: str | None = None
    reset_token_expires: int | None = None
    phone_number: str | None = None
    state: str | None = None
    country: str | None = None
    address: str | None = None
    provider: str = "local"
    google_id: str | None = None
    created_at: str | None = None
    last_login: str | None = None
    verified_at: str | None = None

    @property
    def is_verified(self) -> bool:
        return self.verification_state is VerificationState.verified

    @property
    def role(self) -> str:
        """Display role, as the marketplace front end expects it ("Vendor"/"Buyer")."""
        return self.principal_type.value.capitalize()
