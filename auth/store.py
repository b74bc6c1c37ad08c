"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore (credential store) and DeviceStore (device registry) are the
repositories; _row_to_user / _row_to_device are the mappers. Service code
never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  UNIQUE(user_id, device_id) on the devices table is the invariant that makes
  concurrent logins from the same device safe. upsert_on_login() issues a
  single INSERT ... ON CONFLICT DO UPDATE, so two racing logins can never
  produce two rows: the second writer updates the row the first one created,
  and whichever statement commits last owns the stored token. Find-then-save
  is not used anywhere in this module.

  Every write runs inside engine.begin(): the statement and the read-back
  commit together or roll back together, including on a lock timeout.

Deadlines:
  SQLite: the driver's busy `timeout` bounds how long a writer waits for a
  lock. Other backends: pool_timeout bounds connection checkout.

Layer rule: no imports from api/ or cache/. core/ is allowed.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine

from auth.models import DEFAULT_ROLE, Device, DeviceInfo, User
from core.errors import NotFound

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default=DEFAULT_ROLE),
    Column("is_blocked", Integer, nullable=False, server_default="0"),
    Column("must_change_password", Integer, nullable=False, server_default="0"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_devices = Table(
    "devices",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("device_id", String(255), nullable=False),
    Column("device_name", String(255), nullable=False),
    Column("device_type", String(50), nullable=False),
    Column("device_os", String(100)),
    Column("browser_info", Text),
    Column("ip_address", String(45)),
    Column("token", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_trusted", Integer, nullable=False, server_default="0"),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "device_id", name="uq_devices_user_device"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so validation reads do not block on login writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout_seconds: float = 5.0) -> Engine:
    """Create the engine shared by UserStore and DeviceStore.

    Both repositories must sit on the same engine so a single connection pool
    bounds the number of concurrent DB connections the process opens.
    """
    if db_url.startswith("sqlite"):
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False, "timeout": timeout_seconds},
        )
        event.listen(engine, "connect", _set_wal_mode)
    else:
        engine = create_engine(db_url, pool_timeout=timeout_seconds, pool_pre_ping=True)
    _metadata.create_all(engine)
    return engine


def _upsert_insert(engine: Engine):
    """Return the dialect-specific insert() that supports on_conflict_do_update."""
    if engine.dialect.name == "sqlite":
        return sqlite.insert
    if engine.dialect.name == "postgresql":
        return postgresql.insert
    raise RuntimeError(f"Device registry needs ON CONFLICT support; unsupported dialect {engine.dialect.name!r}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User rows.

    Usage:
        engine = make_engine("sqlite:///sessionguard.db")
        store = UserStore(engine)
        uid = store.create_user(User(username="alice", email="a@x.com", hashed_password=h))
        user = store.get_by_username("alice")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. CredentialStore.register() turns that into AlreadyExists so a
        concurrent registration that slipped past the pre-check still fails
        cleanly.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    is_blocked=1 if user.is_blocked else 0,
                    must_change_password=1 if user.must_change_password else 0,
                    email_verified=1 if user.email_verified else 0,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_collision(self, username: str, email: str) -> User | None:
        """Return any user whose username OR email matches exactly."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.username == username) | (_users.c.email == email)).limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, is_blocked, must_change_password,
        email_verified, hashed_password. Booleans are converted to 0/1.

        Returns True if a row was updated, False if user_id was not found.
        """
        for flag in ("is_blocked", "must_change_password", "email_verified"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))


# ---------------------------------------------------------------------------
# Device registry
# ---------------------------------------------------------------------------


class DeviceStore:
    """Repository for Device rows, keyed by (user_id, device_id).

    Rows are never deleted: revoke and logout flip is_active to 0 so the
    device history stays visible in list_devices().
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._insert = _upsert_insert(engine)

    def find_device(self, user_id: int, device_id: str) -> Device | None:
        """Pure lookup by (user_id, device_id)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _devices.select().where((_devices.c.user_id == user_id) & (_devices.c.device_id == device_id))
            ).fetchone()
        return _row_to_device(row) if row is not None else None

    def upsert_on_login(self, user_id: int, meta: DeviceInfo, token: str) -> Device:
        """Insert or update the device row for a successful login, atomically.

        New row: is_active=1, is_trusted=0 (new devices start untrusted).
        Existing row: token and last_login_at replaced, is_active=1, and each
        optional metadata field overwritten only if the caller supplied it --
        COALESCE(new, current) keeps the stored value when new is NULL.
        is_trusted and created_at are never touched on update.
        """
        now = _now_iso()
        stmt = self._insert(_devices).values(
            user_id=user_id,
            device_id=meta.device_id,
            device_name=meta.device_name,
            device_type=meta.device_type or "unknown",
            device_os=meta.device_os,
            browser_info=meta.browser_info,
            ip_address=meta.ip_address,
            token=token,
            is_active=1,
            is_trusted=0,
            last_login_at=now,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_devices.c.user_id, _devices.c.device_id],
            set_={
                "token": token,
                "last_login_at": now,
                "is_active": 1,
                "device_name": func.coalesce(meta.device_name, _devices.c.device_name),
                "device_type": func.coalesce(meta.device_type, _devices.c.device_type),
                "device_os": func.coalesce(meta.device_os, _devices.c.device_os),
                "browser_info": func.coalesce(meta.browser_info, _devices.c.browser_info),
                "ip_address": func.coalesce(meta.ip_address, _devices.c.ip_address),
            },
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
            row = conn.execute(
                _devices.select().where((_devices.c.user_id == user_id) & (_devices.c.device_id == meta.device_id))
            ).one()
        return _row_to_device(row)

    def deactivate(self, user_id: int, device_id: str) -> bool:
        """Set is_active=0 for one device. Returns False if no such row."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _devices.update()
                .where((_devices.c.user_id == user_id) & (_devices.c.device_id == device_id))
                .values(is_active=0)
            )
        return result.rowcount > 0

    def deactivate_all(self, user_id: int) -> int:
        """Set is_active=0 on every device the user has. Returns rows touched."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _devices.update().where((_devices.c.user_id == user_id) & (_devices.c.is_active == 1)).values(is_active=0)
            )
        return result.rowcount

    def trust(self, user_id: int, device_id: str) -> None:
        """Mark a device trusted. Raises NotFound if the device is unknown.

        Trusting an already-trusted device matches the row and changes nothing.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _devices.update()
                .where((_devices.c.user_id == user_id) & (_devices.c.device_id == device_id))
                .values(is_trusted=1)
            )
        if result.rowcount == 0:
            raise NotFound("Device not found.")

    def list_devices(self, user_id: int) -> list[Device]:
        """Return every device row for the user, most recent login first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _devices.select().where(_devices.c.user_id == user_id).order_by(_devices.c.last_login_at.desc())
            ).fetchall()
        return [_row_to_device(r) for r in rows]

    def ping(self) -> bool:
        """Cheap connectivity check for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(_devices.select().limit(1))
        return True


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        is_blocked=bool(row.is_blocked),
        must_change_password=bool(row.must_change_password),
        email_verified=bool(row.email_verified),
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_device(row) -> Device:
    return Device(
        id=row.id,
        user_id=row.user_id,
        device_id=row.device_id,
        device_name=row.device_name,
        device_type=row.device_type,
        device_os=row.device_os,
        browser_info=row.browser_info,
        ip_address=row.ip_address,
        token=row.token,
        is_active=bool(row.is_active),
        is_trusted=bool(row.is_trusted),
        last_login_at=row.last_login_at,
        created_at=row.created_at,
    )
