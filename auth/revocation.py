"""
auth/revocation.py -- Device trust, revocation and logout.

Ordering rule for every operation here: write the device registry first,
then touch the cache. If the registry write fails nothing has changed and
the error propagates. If the cache eviction fails afterwards, the row is
already inactive, so the validator rejects the token anyway (its step 3) and
the stale slot simply ages out with its TTL.

logout() is scoped by user id. A bare device id is not an authorization
boundary: two users may legitimately register the same client-chosen id.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.errors import NotFound

if TYPE_CHECKING:
    from auth.store import DeviceStore
    from cache.store import SessionCache

logger = logging.getLogger("sessionguard.auth")


class RevocationManager:
    def __init__(self, devices: DeviceStore, cache: SessionCache) -> None:
        self.devices = devices
        self.cache = cache

    def trust_device(self, user_id: int, device_id: str) -> None:
        """Mark a device trusted. Has no effect on any current session."""
        self.devices.trust(user_id, device_id)
        logger.info("Trusted device=%s for user_id=%s", device_id, user_id)

    def revoke_device(self, user_id: int, device_id: str) -> None:
        """Deactivate a device and evict the cache slot holding its token.

        The token is read before deactivation because the update itself does
        not return it.
        """
        device = self.devices.find_device(user_id, device_id)
        if device is None:
            raise NotFound("Device not found.")
        self.devices.deactivate(user_id, device_id)
        if device.token:
            self.cache.evict(user_id, device_id, token=device.token)
        logger.info("Revoked device=%s for user_id=%s", device_id, user_id)

    def logout(self, device_id: str, user_id: int) -> None:
        """End the session on one device. Unknown (user, device) pairs are a no-op."""
        if not self.devices.deactivate(user_id, device_id):
            logger.info("Logout for unknown device=%s user_id=%s ignored", device_id, user_id)
            return
        self.cache.evict(user_id, device_id)
        logger.info("Logged out device=%s for user_id=%s", device_id, user_id)

    def logout_all_devices(self, user_id: int) -> None:
        """Deactivate every device of the user and drop all cached sessions.

        Idempotent: a second call finds nothing active and nothing cached.
        """
        deactivated = self.devices.deactivate_all(user_id)
        evicted = self.cache.evict_all(user_id)
        logger.info("Logged out user_id=%s everywhere (%d devices, %d cached sessions)", user_id, deactivated, evicted)
