"""
API request and response models for SessionGuard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
No response model has a field for the stored device token.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.tokens import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def _strip_str(value):
    return value.strip() if isinstance(value, str) else value


def _check_password_bytes(value: str) -> str:
    # Characters are not bytes: 64 non-ASCII characters can exceed bcrypt's limit.
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    return value


class RegisterRequest(BaseModel):
    """New account. Whitespace is trimmed from every field except the password."""

    username: str = Field(min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = Field(min_length=8, max_length=64)

    @field_validator("username", "email", mode="before")
    @classmethod
    def strip_fields(cls, v):
        return _strip_str(v)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _check_password_bytes(v)


class LoginRequest(BaseModel):
    """Credentials plus the device metadata the registry records.

    device_os, browser_info and ip_address may be omitted; on a repeat login
    from the same device the previously stored values are kept.
    The password is taken verbatim so it matches what create-user stored.
    """

    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=64)
    device_id: str = Field(min_length=1, max_length=255)
    device_name: str = Field(min_length=1, max_length=255)
    device_type: Optional[str] = Field(default=None, max_length=50)
    device_os: Optional[str] = Field(default=None, max_length=100)
    browser_info: Optional[str] = Field(default=None, max_length=1000)
    ip_address: Optional[str] = Field(default=None, max_length=45)

    @field_validator(
        "username", "device_id", "device_name", "device_type", "device_os", "browser_info", "ip_address", mode="before"
    )
    @classmethod
    def strip_fields(cls, v):
        return _strip_str(v)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _check_password_bytes(v)


class ValidateTokenRequest(BaseModel):
    token: str = Field(min_length=1, max_length=4096)


class DeviceRequest(BaseModel):
    device_id: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    role: str
    must_change_password: bool
    is_blocked: bool = False


class SessionResponse(BaseModel):
    user_id: int
    username: str
    device_id: str
    roles: list[str]
    permissions: list[str]
    device_info: dict


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    must_change_password: bool
    session: SessionResponse


class DeviceResponse(BaseModel):
    device_id: str
    device_name: str
    device_type: str
    device_os: Optional[str] = None
    browser_info: Optional[str] = None
    ip_address: Optional[str] = None
    is_active: bool
    is_trusted: bool
    last_login_at: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
