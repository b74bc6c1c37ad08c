"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores, the cache adapter and the service do the work.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Static role -> permission map. The session cache snapshots the permission
# list at login, so a change here only takes effect on the next login.
ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": frozenset(
        {
            "content:read",
            "content:write",
            "content:publish",
            "users:manage",
            "devices:manage",
        }
    ),
    "editor": frozenset({"content:read", "content:write", "content:publish"}),
    "reader": frozenset({"content:read"}),
}

DEFAULT_ROLE = "reader"


@dataclass
class User:
    """A local identity in the credential store.

    must_change_password is set on every self-registered account; the client
    is expected to prompt for a new password on first login. is_blocked is
    checked only after the password verifies, so a locked account still costs
    an attacker a full bcrypt round per guess.
    """

    username: str
    email: str
    id: int | None = None
    hashed_password: str | None = None
    role: str = DEFAULT_ROLE  # "admin", "editor", "reader"
    is_blocked: bool = False
    must_change_password: bool = False
    email_verified: bool = False
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class DeviceInfo:
    """Client-supplied device metadata sent with a login request.

    device_id and device_name are required. device_type may be omitted on the
    wire but defaults to "unknown" on first insert. The remaining fields are
    optional: None on a repeat login means "keep what the registry already
    has", never "clear it".
    """

    device_id: str
    device_name: str
    device_type: str | None = None
    device_os: str | None = None
    browser_info: str | None = None
    ip_address: str | None = None


@dataclass
class Device:
    """One row per (user_id, device_id) in the device registry.

    token is the single access token currently considered valid for this
    device. It is stripped (set to None) before a Device leaves the service
    through list_devices().
    """

    user_id: int
    device_id: str
    device_name: str
    device_type: str
    id: int | None = None
    device_os: str | None = None
    browser_info: str | None = None
    ip_address: str | None = None
    token: str | None = None
    is_active: bool = True
    is_trusted: bool = False
    last_login_at: str | None = None
    created_at: str | None = None


@dataclass
class Session:
    """The cached session payload for one (user, device) slot.

    access_token is the token this payload was written for. SessionCache.get()
    compares it with the presented token; a mismatch is a miss.
    """

    user_id: int
    username: str
    device_id: str
    access_token: str
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    device_info: dict = field(default_factory=dict)


@dataclass
class TokenClaims:
    """Verified claims extracted from an access token."""

    user_id: int
    username: str
    device_id: str
    issued_at: int
    expires_at: int
    jti: str


@dataclass
class LoginResult:
    """What a successful login hands back to the request layer."""

    session: Session
    access_token: str
    expires_in: int
    must_change_password: bool = False
