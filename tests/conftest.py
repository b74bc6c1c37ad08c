"""
tests/conftest.py -- Shared test fixtures for SessionGuard.

This module provides:
  - FakeRedis / BrokenRedis: in-process stand-ins for the redis-py client,
    covering exactly the methods cache/store.py calls
  - engine / service fixtures: isolated in-memory SQLite + fake Redis wiring
  - make_device: factory for DeviceInfo login payloads
  - api_client: TestClient with a patched lifespan and a logged-in admin

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

The DEBUG env var must be set before any api/ import so get_settings() can
auto-generate SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import threading
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any core/api import.
os.environ.setdefault("DEBUG", "true")

import pytest
import redis
from fastapi.testclient import TestClient

from auth.models import DeviceInfo
from auth.service import AuthService
from auth.store import DeviceStore, UserStore, make_engine
from auth.tokens import TokenIssuer
from cache.store import SessionCache

TEST_SECRET = "unit-test-secret-key-0123456789abcdef"

# ---------------------------------------------------------------------------
# Redis doubles
# ---------------------------------------------------------------------------


class _FakePipeline:
    """Queues calls and replays them against the client on execute().

    After watch(), commands run immediately until multi(); execute() then
    raises redis.WatchError if a watched key was written in the meantime,
    the way a real MULTI/EXEC aborts.
    """

    def __init__(self, client: "FakeRedis") -> None:
        self._client = client
        self._calls: list = []
        self._watched: dict[str, int] | None = None
        self._immediate = False

    def __enter__(self) -> "_FakePipeline":
        return self

    def __exit__(self, *exc_info) -> None:
        self.reset()

    def reset(self) -> None:
        self._calls = []
        self._watched = None
        self._immediate = False

    def watch(self, *keys: str) -> None:
        self._watched = {key: self._client.versions.get(key, 0) for key in keys}
        self._immediate = True

    def multi(self) -> None:
        self._immediate = False

    def __getattr__(self, name):
        method = getattr(self._client, name)
        if self._immediate:
            return method

        def queue(*args, **kwargs):
            self._calls.append((method, args, kwargs))
            return self

        return queue

    def execute(self) -> list:
        with self._client.lock:
            watched = self._watched or {}
            if any(self._client.versions.get(key, 0) != seen for key, seen in watched.items()):
                self.reset()
                raise redis.WatchError("Watched variable changed.")
            results = [method(*args, **kwargs) for method, args, kwargs in self._calls]
        self.reset()
        return results


class FakeRedis:
    """Minimal in-memory redis-py double (decode_responses=True semantics).

    TTLs are recorded in .ttls but never expire anything. .versions counts
    writes per string key so pipelines can emulate WATCH.
    """

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.ttls: dict[str, int] = {}
        self.versions: dict[str, int] = {}
        self.lock = threading.RLock()

    def _touch(self, key: str) -> None:
        self.versions[key] = self.versions.get(key, 0) + 1

    def get(self, key: str):
        return self.strings.get(key)

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.strings[key] = value
        self._touch(key)
        if ex is not None:
            self.ttls[key] = ex
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.strings.pop(key, None) is not None or self.sets.pop(key, None) is not None:
                removed += 1
                self._touch(key)
            self.ttls.pop(key, None)
        return removed

    def sadd(self, key: str, *members: str) -> int:
        members_set = self.sets.setdefault(key, set())
        before = len(members_set)
        members_set.update(members)
        return len(members_set) - before

    def srem(self, key: str, *members: str) -> int:
        members_set = self.sets.get(key, set())
        removed = len(members_set & set(members))
        members_set.difference_update(members)
        if not members_set:
            self.sets.pop(key, None)
        return removed

    def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))

    def expire(self, key: str, ttl: int) -> bool:
        if key in self.strings or key in self.sets:
            self.ttls[key] = ttl
            return True
        return False

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass

    def pipeline(self) -> _FakePipeline:
        return _FakePipeline(self)


class _BrokenPipeline:
    def __enter__(self) -> "_BrokenPipeline":
        return self

    def __exit__(self, *exc_info) -> None:
        pass

    def watch(self, *keys):
        raise redis.ConnectionError("Connection refused")

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            return self

        return queue

    def execute(self):
        raise redis.ConnectionError("Connection refused")


class BrokenRedis:
    """Every call fails the way an unreachable Redis server does."""

    def _fail(self, *args, **kwargs):
        raise redis.ConnectionError("Connection refused")

    get = set = delete = sadd = srem = smembers = expire = ping = _fail

    def pipeline(self) -> _BrokenPipeline:
        return _BrokenPipeline()

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    e = make_engine("sqlite:///:memory:")
    yield e
    e.dispose()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> SessionCache:
    return SessionCache(fake_redis)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET, expire_seconds=3600)


@pytest.fixture
def service(engine, cache: SessionCache, issuer: TokenIssuer) -> AuthService:
    """AuthService on in-memory SQLite and FakeRedis. bcrypt at minimum cost for speed."""
    return AuthService(UserStore(engine), DeviceStore(engine), cache, issuer, bcrypt_rounds=4)


@pytest.fixture
def make_device():
    def _make(device_id: str, **kwargs) -> DeviceInfo:
        kwargs.setdefault("device_name", f"{device_id} browser")
        kwargs.setdefault("device_type", "web")
        return DeviceInfo(device_id=device_id, **kwargs)

    return _make


@pytest.fixture
def alice(service: AuthService):
    """A registered, unblocked user 'alice' with password 'pw1-secret'."""
    return service.register("alice", "alice@x.com", "pw1-secret")


# ---------------------------------------------------------------------------
# API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(auth: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test AuthService into app.state so routes never open
    a real Redis connection or the on-disk database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = auth
        yield
        await asyncio.sleep(0)

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, AuthService], None, None]:
    """Yield (client, admin_token, auth) for API integration tests.

    The admin account is created and logged in from device "admin-console"
    through the service before the client starts, so the client cookie jar
    begins empty and each test chooses explicitly how it authenticates.
    """
    from api.main import app

    db_name = request.module.__name__.replace(".", "_")
    engine = make_engine(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    auth = AuthService(
        UserStore(engine),
        DeviceStore(engine),
        SessionCache(FakeRedis()),
        TokenIssuer(TEST_SECRET, expire_seconds=3600),
        bcrypt_rounds=4,
    )
    admin = auth.register("testadmin", "admin@example.com", "testpass123")
    auth.users.update_user(admin.id, role="admin")
    token = auth.login(
        "testadmin",
        "testpass123",
        DeviceInfo(device_id="admin-console", device_name="Admin console", device_type="web"),
    ).access_token

    app.router.lifespan_context = _patch_lifespan(auth)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, auth

    engine.dispose()


@pytest.fixture
def broken_redis() -> BrokenRedis:
    return BrokenRedis()
