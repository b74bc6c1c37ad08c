"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. JWT cookie ("access_token") -- set by POST /auth/login for browser clients.
  2. Authorization: Bearer <token> header -- API and service clients.

Both converge on AuthService.validate_token(), the same call the RPC-style
POST /auth/validate-token endpoint makes, so the two paths cannot drift.

try_get_current_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_session() and raises HTTP 403 if not admin.

Layer rule: auth/dependencies.py may import from fastapi (for
Depends/HTTPException/Request) because it is part of the FastAPI dependency
injection system. It does not import from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Session
from auth.service import AuthService
from core.errors import InvalidToken


def extract_token(request: Request) -> str | None:
    """Return the presented access token from cookie or Bearer header, if any."""
    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def try_get_current_session(request: Request) -> Session | None:
    """Validate the request's token. Returns the Session, or None on any failure.

    Never raises -- callers that need a hard 401 use get_current_session().
    """
    token = extract_token(request)
    if token is None:
        return None
    auth: AuthService = request.app.state.auth
    try:
        return auth.validate_token(token)
    except InvalidToken:
        return None


def get_current_session(request: Request) -> Session:
    """Require a valid token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: Session = Depends(get_current_session)): ...
    """
    session = try_get_current_session(request)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return session


def require_admin(request: Request) -> Session:
    """Require the admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    session = get_current_session(request)
    if "admin" not in session.roles:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return session
