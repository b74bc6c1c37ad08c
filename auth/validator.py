"""
auth/validator.py -- Fail-closed access token validation.

validate() walks a short state machine. Every step either passes or exits
with InvalidToken; the caller never learns which step failed (the reason is
logged, not returned):

  1. decode      -- signature and expiry check (TokenIssuer.decode)
  2. cache       -- slot for (sub, device_id) must exist and hold this token
  3. registry    -- device row must exist, be active, and store this token
  4. cleanup     -- if 3 fails after 2 matched, evict the now-stale slot
  5. accept      -- return the cached Session as-is

The session cache and the device registry are two independent systems with
no transaction between them. The reconciliation rule is simple: a token is
valid only while BOTH vouch for it. An unreachable cache or store is treated
the same as a negative answer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from auth.models import Session
from core.errors import CacheUnavailable, InvalidToken

if TYPE_CHECKING:
    from auth.store import DeviceStore
    from auth.tokens import TokenIssuer
    from cache.store import SessionCache

logger = logging.getLogger("sessionguard.auth")


class TokenValidator:
    def __init__(self, issuer: TokenIssuer, cache: SessionCache, devices: DeviceStore) -> None:
        self.issuer = issuer
        self.cache = cache
        self.devices = devices

    def validate(self, presented_token: str) -> Session:
        claims = self.issuer.decode(presented_token)
        if claims is None:
            raise InvalidToken()

        user_id, device_id = claims.user_id, claims.device_id

        try:
            session = self.cache.get(user_id, device_id, presented_token)
        except CacheUnavailable:
            logger.warning("Rejecting token for user_id=%s: session cache unavailable", user_id)
            raise InvalidToken() from None
        if session is None:
            logger.debug("Rejecting token for user_id=%s device=%s: no matching cache slot", user_id, device_id)
            raise InvalidToken()

        try:
            device = self.devices.find_device(user_id, device_id)
        except SQLAlchemyError:
            logger.warning("Rejecting token for user_id=%s: device registry unavailable", user_id)
            raise InvalidToken() from None

        if device is None or not device.is_active or device.token != presented_token:
            logger.info(
                "Rejecting token for user_id=%s device=%s: registry disagrees with cache, evicting slot",
                user_id,
                device_id,
            )
            self._evict_stale(user_id, device_id, presented_token)
            raise InvalidToken()

        return session

    def _evict_stale(self, user_id: int, device_id: str, token: str) -> None:
        # Token-matched so a concurrent newer login's slot survives.
        try:
            self.cache.evict(user_id, device_id, token=token)
        except CacheUnavailable:
            logger.warning("Could not evict stale slot for user_id=%s device=%s", user_id, device_id)
