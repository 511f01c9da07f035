"""
auth/store.py -- SQLAlchemy Core persistence layer for Buyer and Vendor principals.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_principal is the mapper. Flow and route code never touches SQL.

Two physical tables (vendors, buyers) with identical columns. The
PrincipalType tag picks the table; no code path is duplicated per type.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Hash-on-write: plaintext passwords enter the store only through insert()
  and consume_reset_token(), which hash them with the injected
  PasswordHasher before the row is written. Nothing else can set
  hashed_password.

  Single-use secrets are consumed with one conditional UPDATE whose WHERE
  clause includes the secret value (or digest) and an unexpired expiry. Two
  concurrent consumers cannot both match: the loser sees rowcount == 0.

  Email uniqueness spans both tables. insert() first claims the email in the
  principal_emails registry (primary key on email), which serializes
  concurrent signups for one address, then checks both principal tables in
  the same transaction for rows that predate the registry.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy import BigInteger, Column, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.exceptions import DuplicateEmail, StoreUnavailable
from auth.models import SEARCH_ORDER, LegacyStatus, Principal, PrincipalType, VerificationState
from auth.tokens import PasswordHasher
from auth.validators import normalize_email
from core.clock import now_utc, to_iso

logger = logging.getLogger("bidbuy.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()


def _principal_table(name: str) -> Table:
    return Table(
        name,
        _metadata,
        Column("id", String(32), primary_key=True),
        Column("email", String(255), nullable=False, unique=True),
        Column("name", String(100), nullable=False),
        Column("hashed_password", Text),  # NULL for federated principals
        Column("verification_state", String(16), nullable=False, server_default="unverified"),
        Column("status", String(16), nullable=False, server_default="pending"),  # legacy mirror
        Column("email_token", String(16)),
        Column("email_token_expires", BigInteger),  # epoch ms
        Column("reset_otp_hash", String(64)),
        Column("reset_otp_expires", BigInteger),
        Column("reset_token_hash", String(64), index=True),
        Column("reset_token_expires", BigInteger),
        Column("phone_number", String(32)),
        Column("state", String(100)),
        Column("country", String(100)),
        Column("address", Text),
        Column("provider", String(16), nullable=False, server_default="local"),
        Column("google_id", String(255)),
        Column("created_at", String(40), nullable=False),
        Column("last_login", String(40)),
        Column("verified_at", String(40)),
    )


_tables: dict[PrincipalType, Table] = {
    PrincipalType.vendor: _principal_table("vendors"),
    PrincipalType.buyer: _principal_table("buyers"),
}

# Every email registered in either table. The primary key serializes
# concurrent signups for one email across principal types.
_emails = Table(
    "principal_emails",
    _metadata,
    Column("email", String(255), primary_key=True),
    Column("principal_type", String(16), nullable=False),
    Column("principal_id", String(32), nullable=False),
)

# Columns update_fields() may touch. Secrets and hashed_password are excluded:
# they change only through the dedicated methods below.
_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "verification_state",
        "status",
        "email_token",
        "email_token_expires",
        "phone_number",
        "state",
        "country",
        "address",
        "last_login",
        "verified_at",
    }
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Buyer and Vendor principals.

    Usage:
        store = CredentialStore(PasswordHasher(rounds=12), settings.database_url)
        principal = store.insert(Principal(PrincipalType.buyer, "a@x.com", "Ada"), password="Abc12345!")
        found = store.find_by_email(PrincipalType.buyer, "A@x.com")
        store.close()
    """

    def __init__(self, hasher: PasswordHasher, db_url: str) -> None:
        self.hasher = hasher
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, principal_type: PrincipalType, email: str) -> Principal | None:
        """Look up a principal by email (case-insensitive) in one table."""
        table = _tables[principal_type]
        with self.engine.connect() as conn:
            row = conn.execute(table.select().where(table.c.email == normalize_email(email))).fetchone()
        return _row_to_principal(principal_type, row) if row is not None else None

    def find_any_by_email(self, email: str) -> Principal | None:
        """Look up an email across both tables, vendors first."""
        for principal_type in SEARCH_ORDER:
            principal = self.find_by_email(principal_type, email)
            if principal is not None:
                return principal
        return None

    def find_by_id(self, principal_type: PrincipalType, principal_id: str) -> Principal | None:
        table = _tables[principal_type]
        with self.engine.connect() as conn:
            row = conn.execute(table.select().where(table.c.id == principal_id)).fetchone()
        return _row_to_principal(principal_type, row) if row is not None else None

    def find_any_by_id(self, principal_id: str) -> Principal | None:
        """Resolve a session token's id, vendors first. Ids are unique across tables."""
        for principal_type in SEARCH_ORDER:
            principal = self.find_by_id(principal_type, principal_id)
            if principal is not None:
                return principal
        return None

    def email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            return _email_taken(conn, normalize_email(email))

    def ping(self) -> bool:
        """Cheap liveness probe for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, principal: Principal, password: str | None) -> Principal:
        """Insert a new principal, hashing the plaintext password on write.

        Raises DuplicateEmail if the email is registered in either table,
        including when a concurrent insert wins the per-table UNIQUE index.
        Returns the stored record (with id and created_at assigned).
        """
        table = _tables[principal.principal_type]
        email = normalize_email(principal.email)
        hashed = self.hasher.hash(password) if password is not None else None
        principal_id = uuid4().hex
        try:
            with self.engine.begin() as conn:
                # Registry row first, so the write lock is held before the
                # cross-table check below.
                conn.execute(
                    _emails.insert().values(
                        email=email, principal_type=principal.principal_type.value, principal_id=principal_id
                    )
                )
                if _email_taken(conn, email):
                    raise DuplicateEmail()
                conn.execute(
                    table.insert().values(
                        id=principal_id,
                        email=email,
                        name=principal.name.strip(),
                        hashed_password=hashed,
                        verification_state=principal.verification_state.value,
                        status=principal.status.value,
                        email_token=principal.email_token,
                        email_token_expires=principal.email_token_expires,
                        phone_number=principal.phone_number,
                        state=principal.state,
                        country=principal.country,
                        address=principal.address,
                        provider=principal.provider,
                        google_id=principal.google_id,
                        created_at=to_iso(now_utc()),
                    )
                )
        except IntegrityError as exc:
            raise DuplicateEmail() from exc
        logger.info("Inserted %s %s", principal.principal_type.value, principal_id)
        stored = self.find_by_id(principal.principal_type, principal_id)
        if stored is None:
            raise StoreUnavailable()
        return stored

    def update_fields(self, principal_type: PrincipalType, principal_id: str, **fields) -> bool:
        """Update whitelisted fields on one principal.

        Enum values are stored by value. Unknown field names raise ValueError
        rather than being silently ignored.

        Returns True if a row was updated, False if principal_id was not found.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)!r}")
        if not fields:
            return False
        values = {k: (v.value if isinstance(v, (VerificationState, LegacyStatus)) else v) for k, v in fields.items()}
        table = _tables[principal_type]
        with self.engine.begin() as conn:
            result = conn.execute(table.update().where(table.c.id == principal_id).values(**values))
        return result.rowcount > 0

    def issue_email_token(self, principal_type: PrincipalType, principal_id: str, otp: str, expires_ms: int) -> bool:
        """Store a new email OTP, overwriting any pending one.

        Conditional on the principal not being verified, so a token can never
        be attached to a verified record. Returns False if nothing matched.
        """
        table = _tables[principal_type]
        with self.engine.begin() as conn:
            result = conn.execute(
                table.update()
                .where(
                    (table.c.id == principal_id)
                    & (table.c.verification_state != VerificationState.verified.value)
                )
                .values(
                    email_token=otp,
                    email_token_expires=expires_ms,
                    verification_state=VerificationState.pending.value,
                    status=LegacyStatus.pending.value,
                )
            )
        return result.rowcount > 0

    def consume_email_token(
        self, principal_type: PrincipalType, principal_id: str, otp: str, now_ms: int, verified_at: str | None = None
    ) -> bool:
        """Atomically mark verified iff `otp` is the current, unexpired email token.

        Returns False if the token was already consumed, replaced, or expired.
        """
        table = _tables[principal_type]
        with self.engine.begin() as conn:
            result = conn.execute(
                table.update()
                .where(
                    (table.c.id == principal_id)
                    & (table.c.email_token == otp)
                    & (table.c.email_token_expires > now_ms)
                )
                .values(
                    verification_state=VerificationState.verified.value,
                    status=LegacyStatus.completed.value,
                    verified_at=verified_at or to_iso(now_utc()),
                    email_token=None,
                    email_token_expires=None,
                )
            )
        return result.rowcount > 0

    def mark_verified(self, principal_type: PrincipalType, principal_id: str) -> bool:
        """Reconcile a legacy status=completed row: set verified, clear any email token."""
        table = _tables[principal_type]
        with self.engine.begin() as conn:
            result = conn.execute(
                table.update()
                .where(table.c.id == principal_id)
                .values(
                    verification_state=VerificationState.verified.value,
                    status=LegacyStatus.completed.value,
                    email_token=None,
                    email_token_expires=None,
                )
            )
        return result.rowcount > 0

    def issue_reset_otp(self, principal_type: PrincipalType, principal_id: str, otp_hash: str, expires_ms: int) -> bool:
        """Store the digest of a password-reset OTP, replacing any earlier one."""
        table = _tables[principal_type]
        with self.engine.begin() as conn:
            result = conn.execute(
                table.update()
                .where(table.c.id == principal_id)
                .values(reset_otp_hash=otp_hash, reset_otp_expires=expires_ms)
            )
        return result.rowcount > 0

    def consume_reset_otp(
        self,
        principal_type: PrincipalType,
        principal_id: str,
        otp_hash: str,
        now_ms: int,
        reset_token_hash: str,
        reset_token_expires_ms: int,
    ) -> bool:
        """Atomically swap a valid reset OTP for a reset token.

        Matches only if the stored OTP digest equals `otp_hash` and has not
        expired. Clears the OTP and stores the new reset-token digest in the
        same statement.
        """
        table = _tables[principal_type]
        with self.engine.begin() as conn:
            result = conn.execute(
                table.update()
                .where(
                    (table.c.id == principal_id)
                    & (table.c.reset_otp_hash == otp_hash)
                    & (table.c.reset_otp_expires > now_ms)
                )
                .values(
                    reset_otp_hash=None,
                    reset_otp_expires=None,
                    reset_token_hash=reset_token_hash,
                    reset_token_expires=reset_token_expires_ms,
                )
            )
        return result.rowcount > 0

    def consume_reset_token(self, token_hash: str, new_password: str, now_ms: int) -> Principal | None:
        """Set a new password for whoever holds this unexpired reset token.

        Searches vendors then buyers. The UPDATE repeats the digest and expiry
        predicates, so a token consumed concurrently matches nothing here.
        Hashes the new password on write. Returns the updated principal, or
        None if no table holds a live match.
        """
        hashed = self.hasher.hash(new_password)
        for principal_type in SEARCH_ORDER:
            table = _tables[principal_type]
            live = (table.c.reset_token_hash == token_hash) & (table.c.reset_token_expires > now_ms)
            with self.engine.begin() as conn:
                principal_id = conn.execute(select(table.c.id).where(live)).scalar()
                if principal_id is None:
                    continue
                result = conn.execute(
                    table.update()
                    .where(live & (table.c.id == principal_id))
                    .values(hashed_password=hashed, reset_token_hash=None, reset_token_expires=None)
                )
            if result.rowcount > 0:
                return self.find_by_id(principal_type, principal_id)
        return None

    def update_last_login(self, principal_type: PrincipalType, principal_id: str) -> None:
        """Stamp the current UTC timestamp as last_login."""
        self.update_fields(principal_type, principal_id, last_login=to_iso(now_utc()))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers and row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _email_taken(conn: Connection, email: str) -> bool:
    for table in _tables.values():
        if conn.execute(select(table.c.id).where(table.c.email == email)).first() is not None:
            return True
    return False


def _row_to_principal(principal_type: PrincipalType, row) -> Principal:
    return Principal(
        principal_type=principal_type,
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        verification_state=VerificationState(row.verification_state),
        status=LegacyStatus(row.status),
        email_token=row.email_token,
        email_token_expires=row.email_token_expires,
        reset_otp_hash=row.reset_otp_hash,
        reset_otp_expires=row.reset_otp_expires,
        reset_token_hash=row.reset_token_hash,
        reset_token_expires=row.reset_token_expires,
        phone_number=row.phone_number,
        state=row.state,
        country=row.country,
        address=row.address,
        provider=row.provider,
        google_id=row.google_id,
        created_at=row.created_at,
        last_login=row.last_login,
        verified_at=row.verified_at,
    )
