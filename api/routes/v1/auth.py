"""
api/routes/v1/auth.py -- Credential lifecycle REST endpoints for Buyers and Vendors.

Routes:
  POST /api/v1/auth/{principal_type}/signup               -- create account, mail OTP
  POST /api/v1/auth/{principal_type}/verify-email         -- consume email OTP
  POST /api/v1/auth/{principal_type}/resend-verification  -- fresh email OTP
  POST /api/v1/auth/login                  -- password login, Vendors then Buyers
  POST /api/v1/auth/forgot-password        -- mail reset OTP (never reveals existence)
  POST /api/v1/auth/verify-reset-otp       -- exchange reset OTP for reset token
  POST /api/v1/auth/reset-password         -- set new password with reset token
  GET  /api/v1/auth/me                     -- current principal (Bearer token)

{principal_type} is "buyer" or "vendor".

Every handler returns the AuthService envelope as-is, with the HTTP status
the envelope carries. Handlers contain no auth logic.

Security:
  Login is rate-limited per IP (LOGIN_RATE_LIMIT); every endpoint that
  accepts or mails a one-time code is limited by OTP_RATE_LIMIT.
  Cache-Control: no-store on every response: they carry tokens, codes or
  account state.

Handlers are plain def: bcrypt is CPU-bound, so FastAPI runs them in its
threadpool instead of blocking the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, OTP_RATE_LIMIT, limiter
from api.models import (
    EmailRequest,
    EnvelopeResponse,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    VerifyEmailRequest,
    VerifyResetOtpRequest,
)
from auth.dependencies import bearer_token, get_auth_service
from auth.service import AuthService, Envelope

# All endpoints are public except GET /auth/me, which requires a Bearer token.
router = APIRouter()


def _respond(envelope: Envelope) -> JSONResponse:
    resp = JSONResponse(status_code=envelope.status_code, content=envelope.to_dict())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Verification (per principal type)
# ---------------------------------------------------------------------------


@limiter.limit(OTP_RATE_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/{principal_type}/signup", response_model=EnvelopeResponse, status_code=201)
def signup(
    request: Request,
    principal_type: str,
    body: SignupRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create a Buyer or Vendor account in the pending state and mail its code."""
    return _respond(
        service.signup(
            principal_type,
            name=body.name,
            email=body.email,
            password=body.password,
            phone_number=body.phone_number,
            state=body.state,
            country=body.country,
            address=body.address,
        )
    )


@limiter.limit(OTP_RATE_LIMIT)
@router.post("/auth/{principal_type}/verify-email", response_model=EnvelopeResponse)
def verify_email(
    request: Request,
    principal_type: str,
    body: VerifyEmailRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    return _respond(service.verify_email(principal_type, email=body.email, otp=body.otp))


@limiter.limit(OTP_RATE_LIMIT)
@router.post("/auth/{principal_type}/resend-verification", response_model=EnvelopeResponse)
def resend_verification(
    request: Request,
    principal_type: str,
    body: EmailRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    return _respond(service.resend_verification(principal_type, email=body.email))


# ---------------------------------------------------------------------------
# Login and session
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_RATE_LIMIT)  # brute-force mitigation
@router.post("/auth/login", response_model=EnvelopeResponse)
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce byte-identical responses. An
    unverified account gets 403 with data.requiresVerification and a fresh code
    in its inbox.
    """
    return _respond(service.login(email=body.email, password=body.password))


@router.get("/auth/me", response_model=EnvelopeResponse)
def me(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Return the principal the Bearer token belongs to."""
    return _respond(service.me(bearer_token(request)))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(OTP_RATE_LIMIT)
@router.post("/auth/forgot-password", response_model=EnvelopeResponse)
def forgot_password(
    request: Request,
    body: EmailRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Always 200 with the same body, whether or not the email is registered."""
    return _respond(service.forgot_password(email=body.email))


@limiter.limit(OTP_RATE_LIMIT)
@router.post("/auth/verify-reset-otp", response_model=EnvelopeResponse)
def verify_reset_otp(
    request: Request,
    body: VerifyResetOtpRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    return _respond(service.verify_reset_otp(email=body.email, otp=body.otp))


@limiter.limit(OTP_RATE_LIMIT)
@router.post("/auth/reset-password", response_model=EnvelopeResponse)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    return _respond(service.reset_password(reset_token=body.reset_token, new_password=body.new_password))
