"""
API request and response models for BidBuy Auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request fields are all optional strings: a missing or blank field is reported
by the auth flows as an INVALID_INPUT envelope naming every missing field,
rather than as a framework validation error. Field names follow the camelCase
the marketplace front end sends; snake_case is accepted too.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

# Identity and profile text is trimmed. Passwords and tokens stay byte-exact.
_Text = Annotated[str, StringConstraints(strip_whitespace=True)]

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _Request(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class SignupRequest(_Request):
    """Request body for POST /api/v1/auth/{principal_type}/signup."""

    name: Optional[_Text] = Field(default=None, max_length=200)
    email: Optional[_Text] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=1024)
    phone_number: Optional[_Text] = Field(default=None, max_length=32)
    state: Optional[_Text] = Field(default=None, max_length=100)
    country: Optional[_Text] = Field(default=None, max_length=100)
    address: Optional[_Text] = Field(default=None, max_length=500)


class VerifyEmailRequest(_Request):
    """Request body for POST /api/v1/auth/{principal_type}/verify-email."""

    email: Optional[_Text] = Field(default=None, max_length=255)
    # Some clients send the code as a number.
    otp: Optional[Union[str, int]] = None


class EmailRequest(_Request):
    """Request body for resend-verification and forgot-password."""

    email: Optional[_Text] = Field(default=None, max_length=255)


class LoginRequest(_Request):
    """Request body for POST /api/v1/auth/login."""

    email: Optional[_Text] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=1024)


class VerifyResetOtpRequest(_Request):
    """Request body for POST /api/v1/auth/verify-reset-otp."""

    email: Optional[_Text] = Field(default=None, max_length=255)
    otp: Optional[Union[str, int]] = None


class ResetPasswordRequest(_Request):
    """Request body for POST /api/v1/auth/reset-password."""

    reset_token: Optional[str] = Field(default=None, max_length=256)
    new_password: Optional[str] = Field(default=None, max_length=1024)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class EnvelopeResponse(BaseModel):
    """The one response shape every auth endpoint returns, success or failure."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    data: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
