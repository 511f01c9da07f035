"""
auth/validators.py -- Input policy for credential-lifecycle operations.

Pure functions. Each validate_* raises the matching AuthError subclass with a
field-level message; password_errors() collects every failed rule so the
client can show them all at once instead of one per round-trip.

Layer rule: no imports from api/, notify/, or core/.
"""

from __future__ import annotations

import re

from auth.exceptions import InvalidEmail, InvalidInput, WeakPassword
from auth.models import PrincipalType

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
PHONE_PATTERN = r"^\+?[\d\s-]{1,16}$"
PASSWORD_SPECIALS = "@$!%*?&"
PASSWORD_MIN_LENGTH = 8
# bcrypt only looks at the first 72 bytes; longer inputs are rejected outright.
PASSWORD_MAX_BYTES = 72
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50

_EMAIL_RE = re.compile(EMAIL_PATTERN)
_PHONE_RE = re.compile(PHONE_PATTERN)


def parse_principal_type(value: PrincipalType | str | None) -> PrincipalType:
    """Accept "buyer"/"vendor" in any case; anything else is InvalidInput."""
    if isinstance(value, PrincipalType):
        return value
    try:
        return PrincipalType((value or "").strip().lower())
    except ValueError:
        raise InvalidInput(
            "Principal type must be one of: " + ", ".join(t.value for t in PrincipalType),
            {"field": "principalType"},
        ) from None


def normalize_email(email: str | None) -> str:
    """Trim and lower-case. Emails are case-insensitive everywhere in the store."""
    return (email or "").strip().lower()


def require(**fields: object) -> None:
    """Raise InvalidInput naming every missing (None or blank) field."""
    missing = [name for name, value in fields.items() if value is None or not str(value).strip()]
    if missing:
        raise InvalidInput(
            f"{_humanize(missing)} {'is' if len(missing) == 1 else 'are'} required",
            {"fields": missing},
        )


def validate_email(email: str) -> None:
    if not _EMAIL_RE.match(email):
        raise InvalidEmail(data={"field": "email"})


def password_errors(password: str) -> list[str]:
    """Return a message for every password rule that fails (empty list = ok)."""
    errors: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        errors.append(f"Password must be at most {PASSWORD_MAX_BYTES} bytes long")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not any(ch in PASSWORD_SPECIALS for ch in password):
        errors.append(f"Password must contain at least one special character ({PASSWORD_SPECIALS})")
    return errors


def validate_password(password: str) -> None:
    errors = password_errors(password)
    if errors:
        raise WeakPassword(data={"field": "password", "errors": errors})


def validate_name(name: str) -> None:
    length = len(name.strip())
    if length < NAME_MIN_LENGTH or length > NAME_MAX_LENGTH:
        raise InvalidInput(
            f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters",
            {"field": "name"},
        )


def validate_phone(phone: str | None) -> None:
    """Phone is optional; only a supplied value is checked."""
    if phone and not _PHONE_RE.match(phone.strip()):
        raise InvalidInput("Please provide a valid phone number", {"field": "phoneNumber"})


def _humanize(names: list[str]) -> str:
    words = [n.replace("_", " ") for n in names]
    text = words[0] if len(words) == 1 else ", ".join(words[:-1]) + " and " + words[-1]
    return text[0].upper() + text[1:]
