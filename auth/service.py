"""
auth/service.py -- The operations the auth core exposes to its callers.

AuthService is a facade: it owns no state of its own and delegates to the
credential store, token issuer, device registry, session cache, validator and
revocation manager. The HTTP routes, the FastAPI dependency and the CLI all
call into this one object, so validate_token() has identical semantics
whether it is reached from a request dependency or the RPC-style endpoint.

login() ordering:
  verify credentials -> mint token -> upsert device row (stores the token)
  -> write cache slot -> return.
  The token exists only in memory until the registry upsert commits. If the
  upsert fails or times out, the exception propagates and the token is never
  returned. If the cache write fails, CacheUnavailable propagates: the token
  is persisted but uncached, which the validator treats as invalid.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from auth.credentials import CredentialStore
from auth.models import ROLE_PERMISSIONS, Device, DeviceInfo, LoginResult, Session, User
from auth.revocation import RevocationManager
from auth.store import DeviceStore, UserStore, make_engine
from auth.tokens import TokenIssuer
from auth.validator import TokenValidator
from cache.store import SessionCache
from core.config import Settings
from core.errors import NotFound

logger = logging.getLogger("sessionguard.auth")


class AuthService:
    def __init__(
        self,
        users: UserStore,
        devices: DeviceStore,
        cache: SessionCache,
        issuer: TokenIssuer,
        bcrypt_rounds: int = 12,
    ) -> None:
        self.users = users
        self.devices = devices
        self.cache = cache
        self.issuer = issuer
        self.credentials = CredentialStore(users, bcrypt_rounds=bcrypt_rounds)
        self.validator = TokenValidator(issuer, cache, devices)
        self.revocation = RevocationManager(devices, cache)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def register(self, username: str, email: str, password: str) -> User:
        return self.credentials.register(username, email, password)

    def login(self, username: str, password: str, device: DeviceInfo) -> LoginResult:
        user = self.credentials.verify(username, password)
        token = self.issuer.issue(user.id, user.username, device.device_id)
        row = self.devices.upsert_on_login(user.id, device, token)
        self.users.update_last_login(user.id)

        session = Session(
            user_id=user.id,
            username=user.username,
            device_id=row.device_id,
            access_token=token,
            roles=[user.role],
            permissions=sorted(ROLE_PERMISSIONS.get(user.role, ())),
            device_info={
                "device_id": row.device_id,
                "device_name": row.device_name,
                "device_type": row.device_type,
                "device_os": row.device_os,
                "ip_address": row.ip_address,
            },
        )
        self.cache.put(session, ttl=self.issuer.expire_seconds)
        logger.info("Login user_id=%s device=%s", user.id, row.device_id)
        return LoginResult(
            session=session,
            access_token=token,
            expires_in=self.issuer.expire_seconds,
            must_change_password=user.must_change_password,
        )

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def validate_token(self, token: str) -> Session:
        return self.validator.validate(token)

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def trust_device(self, user_id: int, device_id: str) -> None:
        self.revocation.trust_device(user_id, device_id)

    def revoke_device(self, user_id: int, device_id: str) -> None:
        self.revocation.revoke_device(user_id, device_id)

    def logout(self, device_id: str, user_id: int) -> None:
        self.revocation.logout(device_id, user_id)

    def logout_all_devices(self, user_id: int) -> None:
        self.revocation.logout_all_devices(user_id)

    def list_devices(self, user_id: int) -> list[Device]:
        """Return the user's devices with the stored token stripped."""
        return [replace(d, token=None) for d in self.devices.list_devices(user_id)]

    # ------------------------------------------------------------------
    # Account administration
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> User:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found.")
        return user

    def set_blocked(self, user_id: int, blocked: bool) -> None:
        """Lock or unlock an account. Locking also signs it out everywhere."""
        if not self.users.update_user(user_id, is_blocked=blocked):
            raise NotFound("User not found.")
        if blocked:
            self.revocation.logout_all_devices(user_id)
        logger.info("user_id=%s blocked=%s", user_id, blocked)

    def close(self) -> None:
        self.users.engine.dispose()
        self.cache.close()


def build_auth_service(settings: Settings) -> AuthService:
    """Wire an AuthService from Settings.

    This is the only place the signing secret leaves the settings object:
    it is handed to TokenIssuer's constructor and nothing else reads it.
    """
    engine = make_engine(settings.database_url, timeout_seconds=settings.db_timeout_seconds)
    return AuthService(
        users=UserStore(engine),
        devices=DeviceStore(engine),
        cache=SessionCache.from_url(settings.redis_url, timeout_seconds=settings.redis_timeout_seconds),
        issuer=TokenIssuer(
            settings.secret_key,
            expire_seconds=settings.token_expire_seconds,
            algorithm=settings.jwt_algorithm,
        ),
        bcrypt_rounds=settings.bcrypt_rounds,
    )
