"""
auth/tokens.py -- Password hashing and JWT issue/verify.

Security design decisions:
  JWT: python-jose with HS256 by default. Tokens carry sub (user id),
       username, device_id, iat, exp and a random jti. A token on its own
       proves nothing beyond "this server signed it once" -- TokenValidator
       only accepts it when the session cache and the device registry both
       still vouch for it.

  The signing secret, algorithm and lifetime are constructor arguments of
  TokenIssuer. Nothing in this module reads configuration; the process-wide
  secret is loaded once by core.config.get_settings() and injected by
  auth.service.build_auth_service().

  Passwords: bcrypt used directly (no passlib wrapper). The cost factor is a
       parameter so CredentialStore can fix it at construction time.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import TokenClaims

logger = logging.getLogger("sessionguard.auth")

_REQUIRED_CLAIMS = ("sub", "username", "device_id", "iat", "exp", "jti")

# bcrypt reads at most 72 bytes of input. Newer releases raise on anything
# longer and older ones truncate silently, so the limit is enforced here.
MAX_PASSWORD_BYTES = 72


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError if the UTF-8 encoding exceeds MAX_PASSWORD_BYTES.
    Callers validate first; this is the last line before bcrypt.
    """
    if password_too_long(plain):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    An over-long password never matches, but it still pays for one bcrypt
    round on its first 72 bytes so the failure costs the same as any other.
    """
    encoded = plain.encode("utf-8")
    too_long = len(encoded) > MAX_PASSWORD_BYTES
    try:
        matched = bcrypt.checkpw(encoded[:MAX_PASSWORD_BYTES], hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash: treat as a non-match rather than a 500.
        return False
    return matched and not too_long


# ---------------------------------------------------------------------------
# JWT issue / decode
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints and verifies signed access tokens bound to a (user, device) pair.

    Stateless and thread-safe: the only state is the immutable secret and
    window passed at construction. issue() never touches a store.

    Usage:
        issuer = TokenIssuer(secret_key, expire_seconds=3600)
        token = issuer.issue(42, "alice", "laptop-1")
        claims = issuer.decode(token)   # TokenClaims or None
    """

    def __init__(self, secret_key: str, expire_seconds: int, algorithm: str = "HS256") -> None:
        if not secret_key:
            raise ValueError("TokenIssuer requires a non-empty secret key.")
        if expire_seconds <= 0:
            raise ValueError("expire_seconds must be positive.")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.expire_seconds = expire_seconds

    def issue(self, user_id: int, username: str, device_id: str) -> str:
        """Encode a signed JWT for the given identity and device.

        jti is a random nonce: two logins from the same device inside the same
        second must still produce different tokens, otherwise the registry
        could not tell the older one apart from the newer one.
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),  # JOSE requires sub to be a string
            "username": username,
            "device_id": device_id,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.expire_seconds)).timestamp()),
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def decode(self, token: str) -> TokenClaims | None:
        """Verify signature and expiry. Returns TokenClaims, or None on any failure.

        Returning None (rather than raising) keeps the validator's state
        machine flat: every failure takes the same exit.
        """
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError as exc:
            logger.debug("Token rejected at decode: %s", exc)
            return None
        if any(claim not in payload for claim in _REQUIRED_CLAIMS):
            logger.debug("Token rejected: missing claims")
            return None
        try:
            return TokenClaims(
                user_id=int(payload["sub"]),
                username=str(payload["username"]),
                device_id=str(payload["device_id"]),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
                jti=str(payload["jti"]),
            )
        except (TypeError, ValueError):
            logger.debug("Token rejected: malformed claims")
            return None
