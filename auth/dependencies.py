"""
auth/dependencies.py -- FastAPI Depends() helpers for the auth routes.

get_auth_service() hands route handlers the AuthService built in lifespan.
bearer_token() extracts the session token from "Authorization: Bearer <token>".
Both never raise; a missing token is passed on as None and the service turns
it into an InvalidOrExpiredToken envelope.

Layer rule: no imports from notify/ or core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    """Use as a FastAPI dependency:
    @router.post("/auth/login")
    def route(service: AuthService = Depends(get_auth_service)): ...
    """
    return request.app.state.auth_service


def bearer_token(request: Request) -> str | None:
    """Return the token from an Authorization: Bearer header, or None."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
