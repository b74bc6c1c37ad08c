"""
cache/store.py -- Redis-backed session cache.

Holds the currently valid session payload for each (user, device) slot so
request-time validation does not need to load the user row and recompute
roles and permissions on every hit.

Key layout:
    session:{user_id}:{device_id}   JSON Session payload, TTL = token lifetime
    session_index:{user_id}         SET of device_ids that have a slot, used by
                                    evict_all() to find every slot of a user

One slot per device, not per user: a login from a second device leaves the
first device's session intact. A repeat login from the same device
overwrites its slot (last write wins, no merge).

Failure policy:
    Every redis.RedisError (connection refused, timeout, ...) and every
    undecodable payload is raised as core.errors.CacheUnavailable. This module
    never guesses: callers decide how to fail, and the validator fails closed.

Usage:
    cache = SessionCache.from_url("redis://localhost:6379/0", timeout_seconds=2.0)
    cache.put(session, ttl=3600)
    cache.get(42, "laptop-1", presented_token)   # Session or None
    cache.evict(42, "laptop-1")
    cache.evict_all(42)

Layer rule: cache/ imports only stdlib, redis, core/, and auth.models (the
Session dataclass it stores).
"""

from __future__ import annotations

import hmac
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict

import redis

from auth.models import Session
from core.errors import CacheUnavailable

logger = logging.getLogger("sessionguard.cache")


def _slot_key(user_id: int, device_id: str) -> str:
    return f"session:{user_id}:{device_id}"


def _index_key(user_id: int) -> str:
    return f"session_index:{user_id}"


@contextmanager
def _cache_call(operation: str) -> Iterator[None]:
    """Translate Redis and payload errors into CacheUnavailable."""
    try:
        yield
    except redis.RedisError as exc:
        logger.warning("Session cache %s failed: %s", operation, exc)
        raise CacheUnavailable() from exc
    except (ValueError, TypeError, KeyError) as exc:
        logger.warning("Session cache %s returned an unreadable payload: %s", operation, exc)
        raise CacheUnavailable() from exc


def _decode_session(raw: str) -> Session:
    """Parse a slot payload. Raises ValueError or TypeError on any shape mismatch."""
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError(f"slot payload is a {type(payload).__name__}, not an object")
    session = Session(**payload)
    if not isinstance(session.access_token, str):
        raise ValueError("slot payload access_token is not a string")
    return session


class SessionCache:
    """Thin Redis adapter for Session payloads.

    The client must be created with decode_responses=True; from_url() does
    that and applies the socket deadlines. Any object with the same method
    surface (get/set/delete/sadd/srem/smembers/expire/ping, and a
    pipeline supporting watch/multi/execute as a context manager) works,
    which is how the tests inject an in-process fake.
    """

    def __init__(self, client) -> None:
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str, timeout_seconds: float = 2.0) -> "SessionCache":
        client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    def put(self, session: Session, ttl: int) -> None:
        """Write (or overwrite) the slot for session.user_id / session.device_id."""
        ttl = max(1, int(ttl))
        index = _index_key(session.user_id)
        with _cache_call("put"):
            pipe = self.client.pipeline()
            pipe.set(_slot_key(session.user_id, session.device_id), json.dumps(asdict(session)), ex=ttl)
            pipe.sadd(index, session.device_id)
            pipe.expire(index, ttl)
            pipe.execute()

    def get(self, user_id: int, device_id: str, presented_token: str) -> Session | None:
        """Return the cached Session only if it was written for presented_token.

        A hit whose embedded token differs is a miss: a newer login from the
        same device has replaced the slot and the presented token is stale.
        """
        with _cache_call("get"):
            raw = self.client.get(_slot_key(user_id, device_id))
            if raw is None:
                return None
            session = _decode_session(raw)
            if not hmac.compare_digest(session.access_token.encode(), presented_token.encode()):
                return None
        return session

    def evict(self, user_id: int, device_id: str, token: str | None = None) -> bool:
        """Delete one device slot. Returns True if a slot was deleted.

        With token given, the slot is only deleted if it still holds that
        token, so revoking an old token never wipes out a newer login's slot.
        The compare and the delete run under WATCH: if a login rewrites the
        slot in between, the transaction aborts and the newer slot stays.
        """
        key = _slot_key(user_id, device_id)
        with _cache_call("evict"):
            if token is None:
                pipe = self.client.pipeline()
                pipe.delete(key)
                pipe.srem(_index_key(user_id), device_id)
                deleted, _ = pipe.execute()
                return bool(deleted)

            with self.client.pipeline() as pipe:
                pipe.watch(key)
                raw = pipe.get(key)
                if raw is None or _decode_session(raw).access_token != token:
                    return False
                pipe.multi()
                pipe.delete(key)
                pipe.srem(_index_key(user_id), device_id)
                try:
                    deleted, _ = pipe.execute()
                except redis.WatchError:
                    logger.debug("Slot for user_id=%s device=%s changed during evict, kept", user_id, device_id)
                    return False
        return bool(deleted)

    def evict_all(self, user_id: int) -> int:
        """Delete every slot the user has. Returns the number of slots deleted."""
        index = _index_key(user_id)
        with _cache_call("evict_all"):
            device_ids = self.client.smembers(index)
            pipe = self.client.pipeline()
            for device_id in device_ids:
                pipe.delete(_slot_key(user_id, device_id))
            pipe.delete(index)
            results = pipe.execute()
        # Last result is the index delete; the rest are slot deletes.
        return sum(1 for r in results[:-1] if r)

    def ping(self) -> bool:
        with _cache_call("ping"):
            return bool(self.client.ping())

    def close(self) -> None:
        self.client.close()
