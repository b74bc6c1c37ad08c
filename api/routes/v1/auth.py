"""
api/routes/v1/auth.py -- Authentication and device-session REST endpoints.

Routes:
  POST /api/v1/auth/register               -- create an account (public)
  POST /api/v1/auth/login                  -- password login; sets JWT cookie (public)
  POST /api/v1/auth/validate-token         -- RPC-style token check for other services (public)
  GET  /api/v1/auth/me                     -- current session (requires auth)
  GET  /api/v1/auth/devices                -- caller's devices, tokens never included
  POST /api/v1/auth/devices/trust          -- mark one of the caller's devices trusted
  POST /api/v1/auth/devices/revoke         -- revoke one of the caller's devices
  POST /api/v1/auth/logout                 -- end the current device's session; clears cookie
  POST /api/v1/auth/logout-all             -- end every session of the caller
  GET  /api/v1/auth/users/{id}/devices     -- any user's devices (admin only)
  POST /api/v1/auth/users/{id}/lock        -- block account and sign out everywhere (admin only)
  POST /api/v1/auth/users/{id}/unlock      -- unblock account (admin only)

Security:
  Device routes always act on session.user_id taken from the validated token,
  never on a user id from the request body, so one user cannot trust or revoke
  another user's device.
  Login maps NotFound to the same response as a wrong password, so the
  endpoint does not reveal which usernames exist.
  Cache-Control: no-store on every response carrying a token.

AuthError subclasses raised here propagate to the handler in api/main.py,
which renders the standard error envelope.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    DeviceRequest,
    DeviceResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    SessionResponse,
    UserResponse,
    ValidateTokenRequest,
)
from auth.dependencies import get_current_session, require_admin
from auth.models import Device, DeviceInfo, Session, User
from auth.service import AuthService
from core.config import get_settings
from core.errors import InvalidCredentials, NotFound

# Auth policy:
# - register, login, validate-token: public
# - me, devices, devices/trust, devices/revoke, logout, logout-all: get_current_session
# - users/{id}/...: require_admin
router = APIRouter()


def _auth(request: Request) -> AuthService:
    return request.app.state.auth


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create a local account. The new account must change its password on first login."""
    user = _auth(request).register(body.username, body.email, body.password)
    return _user_to_response(user)


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate, register the device, and return a bearer token.

    The token is also written as an httpOnly cookie for browser clients.
    """
    device = DeviceInfo(
        device_id=body.device_id,
        device_name=body.device_name,
        device_type=body.device_type,
        device_os=body.device_os,
        browser_info=body.browser_info,
        ip_address=body.ip_address or (request.client.host if request.client else None),
    )
    try:
        result = _auth(request).login(body.username, body.password, device)
    except NotFound:
        raise InvalidCredentials() from None

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=result.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=result.expires_in,
            must_change_password=result.must_change_password,
            session=_session_to_response(result.session),
        ).model_dump(),
    )
    resp.set_cookie(
        "access_token",
        value=result.access_token,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
        max_age=result.expires_in,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/validate-token", response_model=SessionResponse)
def validate_token(request: Request, body: ValidateTokenRequest) -> SessionResponse:
    """Validate a token on behalf of another service.

    Same semantics as the cookie/Bearer dependency: any failure is a generic
    401 invalid_token with no hint about which check failed.
    """
    session = _auth(request).validate_token(body.token)
    return _session_to_response(session)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=SessionResponse)
def me(session: Session = Depends(get_current_session)) -> SessionResponse:
    return _session_to_response(session)


@router.get("/auth/devices", response_model=list[DeviceResponse])
def list_devices(request: Request, session: Session = Depends(get_current_session)) -> list[DeviceResponse]:
    return [_device_to_response(d) for d in _auth(request).list_devices(session.user_id)]


@router.post("/auth/devices/trust", response_model=MessageResponse)
def trust_device(
    request: Request,
    body: DeviceRequest,
    session: Session = Depends(get_current_session),
) -> MessageResponse:
    _auth(request).trust_device(session.user_id, body.device_id)
    return MessageResponse(message="Device trusted.")


@router.post("/auth/devices/revoke", response_model=MessageResponse)
def revoke_device(
    request: Request,
    body: DeviceRequest,
    session: Session = Depends(get_current_session),
) -> MessageResponse:
    """Revoke one device. Revoking the current device ends this session too."""
    _auth(request).revoke_device(session.user_id, body.device_id)
    return MessageResponse(message="Device revoked.")


@router.post("/auth/logout")
def logout(request: Request, session: Session = Depends(get_current_session)) -> JSONResponse:
    """End the session of the device this token belongs to and clear the cookie."""
    _auth(request).logout(session.device_id, session.user_id)
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.post("/auth/logout-all")
def logout_all(request: Request, session: Session = Depends(get_current_session)) -> JSONResponse:
    _auth(request).logout_all_devices(session.user_id)
    resp = JSONResponse(content={"message": "Logged out of all devices."})
    resp.delete_cookie("access_token")
    return resp


# ---------------------------------------------------------------------------
# Administration (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users/{user_id}/devices", response_model=list[DeviceResponse])
def admin_list_devices(
    request: Request,
    user_id: int,
    admin: Session = Depends(require_admin),
) -> list[DeviceResponse]:
    auth = _auth(request)
    auth.get_user(user_id)  # 404 for unknown users instead of an empty list
    return [_device_to_response(d) for d in auth.list_devices(user_id)]


@router.post("/auth/users/{user_id}/lock", response_model=MessageResponse)
def lock_user(request: Request, user_id: int, admin: Session = Depends(require_admin)) -> MessageResponse:
    _auth(request).set_blocked(user_id, True)
    return MessageResponse(message="User locked and signed out of all devices.")


@router.post("/auth/users/{user_id}/unlock", response_model=MessageResponse)
def unlock_user(request: Request, user_id: int, admin: Session = Depends(require_admin)) -> MessageResponse:
    _auth(request).set_blocked(user_id, False)
    return MessageResponse(message="User unlocked.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        must_change_password=user.must_change_password,
        is_blocked=user.is_blocked,
    )


def _session_to_response(session: Session) -> SessionResponse:
    return SessionResponse(
        user_id=session.user_id,
        username=session.username,
        device_id=session.device_id,
        roles=session.roles,
        permissions=session.permissions,
        device_info=session.device_info,
    )


def _device_to_response(device: Device) -> DeviceResponse:
    return DeviceResponse(
        device_id=device.device_id,
        device_name=device.device_name,
        device_type=device.device_type,
        device_os=device.device_os,
        browser_info=device.browser_info,
        ip_address=device.ip_address,
        is_active=device.is_active,
        is_trusted=device.is_trusted,
        last_login_at=device.last_login_at,
    )
