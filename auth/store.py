"""
auth/store.py -- SQLAlchemy Core persistence layer for identities and roles.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_identity / _row_to_role are the mappers. The lockout policy and the
session service never touch SQL directly, and the store holds no business
rules -- it answers lookups and applies the writes it is told to apply.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  increment_failed_attempts() is a single UPDATE whose SET clause computes the
  new counter, lock flag and lock timestamp from the row's current values.
  Two concurrent failures for the same user therefore serialize on the row
  and neither increment is lost. save() uses optimistic versioning: the UPDATE
  matches on (id, version) and raises StaleIdentityError when it matches zero
  rows. record_login_success() only matches a row that still admits logins,
  and create_with_role() writes a new user and its first role together.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import Identity, Role
from auth.results import StaleIdentityError
from core.clock import Clock, to_iso, utc_now
from core.config import DEFAULT_DB_URL

logger = logging.getLogger("kmportal.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(100), nullable=False, unique=True),
    Column("password_hash", String(100), nullable=False),
    Column("full_name", String(100), nullable=False),
    Column("department", String(100)),
    Column("position", String(50)),
    Column("phone_number", String(20)),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("is_locked", Boolean, nullable=False, server_default="0"),
    Column("locked_at", String(40)),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("last_login_at", String(40)),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
    Column("version", Integer, nullable=False, server_default="0"),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("display_name", String(100), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("priority", Integer, nullable=False, server_default="100"),
    Column("is_system_role", Boolean, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind the lockout writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Identity and Role records.

    Usage:
        store = CredentialStore()
        store.seed_roles(ROLE_CATALOG.values())
        identity = store.save(Identity(username="alice", email="a@example.com", ...))
        store.assign_role(identity.id, "ROLE_EMPLOYEE")
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL, clock: Clock = utc_now) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        self._clock = clock
        _metadata.create_all(self.engine)

    def _now(self) -> str:
        return to_iso(self._clock())

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Identity lookups
    # ------------------------------------------------------------------

    def find_by_username(self, username: str) -> Identity | None:
        """Look up an identity by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_by_email(self, email: str) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_by_id(self, identity_id: int) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def exists_by_username(self, username: str) -> bool:
        with self.engine.connect() as conn:
            found = conn.execute(select(_users.c.id).where(_users.c.username == username).limit(1)).first()
        return found is not None

    def exists_by_email(self, email: str) -> bool:
        with self.engine.connect() as conn:
            found = conn.execute(select(_users.c.id).where(_users.c.email == email).limit(1)).first()
        return found is not None

    def has_users(self) -> bool:
        """Return True if at least one identity exists. Used by the admin bootstrap CLI."""
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    # ------------------------------------------------------------------
    # Identity writes
    # ------------------------------------------------------------------

    def save(self, identity: Identity) -> Identity:
        """Insert a new identity (id is None) or update an existing one.

        Updates are optimistic: the row must still carry identity.version, and
        the stored version is bumped by one. A concurrent writer that got there
        first makes this call raise StaleIdentityError instead of silently
        overwriting its change.

        Raises sqlalchemy.exc.IntegrityError on a duplicate username or email;
        callers check exists_by_* first and treat the error as a lost race.
        """
        now = self._now()
        values = _identity_values(identity, now)
        with self.engine.begin() as conn:
            if identity.id is None:
                result = conn.execute(_users.insert().values(created_at=now, version=0, **values))
                identity_id = result.inserted_primary_key[0]
            else:
                result = conn.execute(
                    _users.update()
                    .where((_users.c.id == identity.id) & (_users.c.version == identity.version))
                    .values(version=identity.version + 1, **values)
                )
                if result.rowcount == 0:
                    raise StaleIdentityError(identity.id, identity.version)
                identity_id = identity.id
            row = conn.execute(_users.select().where(_users.c.id == identity_id)).fetchone()
        return _row_to_identity(row)

    def create_with_role(self, identity: Identity, role_name: str) -> Identity | None:
        """Insert a new identity together with its first role in one transaction.

        Returns None, with nothing written, when role_name is not in the roles
        table. Any failure while linking the role rolls back the user row too,
        so an identity never exists without a role.

        Raises sqlalchemy.exc.IntegrityError on a duplicate username or email.
        """
        now = self._now()
        with self.engine.begin() as conn:
            role_id = conn.execute(select(_roles.c.id).where(_roles.c.name == role_name)).scalar()
            if role_id is None:
                return None
            result = conn.execute(
                _users.insert().values(created_at=now, version=0, **_identity_values(identity, now))
            )
            identity_id = result.inserted_primary_key[0]
            self._link_role(conn, identity_id, role_id)
            row = conn.execute(_users.select().where(_users.c.id == identity_id)).fetchone()
        return _row_to_identity(row)

    def increment_failed_attempts(self, identity_id: int, max_attempts: int, now: datetime) -> Identity | None:
        """Atomically add one failed attempt and lock the row when it reaches max_attempts.

        The counter is clamped at max_attempts. locked_at is only stamped by the
        increment that performs the lock; an already-locked row keeps its
        original timestamp. Returns the refreshed identity, or None if the row
        no longer exists.
        """
        attempts = _users.c.failed_login_attempts
        next_attempts = case((attempts + 1 >= max_attempts, max_attempts), else_=attempts + 1)
        reaches_limit = attempts + 1 >= max_attempts
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == identity_id)
                .values(
                    failed_login_attempts=next_attempts,
                    is_locked=case((reaches_limit, True), else_=_users.c.is_locked),
                    locked_at=case(
                        (reaches_limit & (_users.c.is_locked == False), to_iso(now)),  # noqa: E712
                        else_=_users.c.locked_at,
                    ),
                    updated_at=to_iso(now),
                    version=_users.c.version + 1,
                )
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(_users.c.id == identity_id)).fetchone()
        return _row_to_identity(row)

    def reset_failed_attempts(self, identity_id: int) -> None:
        """Zero the failed-attempt counter. The lock flag is deliberately left alone."""
        self._update(identity_id, failed_login_attempts=0)

    def lock(self, identity_id: int, now: datetime) -> None:
        self._update(identity_id, is_locked=True, locked_at=to_iso(now))

    def unlock(self, identity_id: int) -> None:
        self._update(identity_id, is_locked=False, locked_at=None, failed_login_attempts=0)

    def record_login_success(self, identity_id: int, max_attempts: int, now: datetime) -> bool:
        """Zero the counter and stamp last_login_at, but only while the row still admits logins.

        The WHERE clause repeats the access gate (active, not locked, counter
        below max_attempts) so a lock written by a concurrent failure between
        the gate and this call wins. Returns False when no row matched.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == identity_id)
                    & (_users.c.is_active == True)  # noqa: E712
                    & (_users.c.is_locked == False)  # noqa: E712
                    & (_users.c.failed_login_attempts < max_attempts)
                )
                .values(
                    failed_login_attempts=0,
                    last_login_at=to_iso(now),
                    updated_at=to_iso(now),
                    version=_users.c.version + 1,
                )
            )
        return result.rowcount > 0

    def set_active(self, identity_id: int, is_active: bool) -> bool:
        """Activate (approve) or deactivate an identity. Returns False if not found."""
        return self._update(identity_id, is_active=is_active)

    def _update(self, identity_id: int, **fields) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == identity_id)
                .values(updated_at=self._now(), version=_users.c.version + 1, **fields)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def seed_roles(self, roles) -> int:
        """Insert catalog roles that are not yet present. Idempotent; returns the number inserted.

        Existing rows are left untouched so an administrator's is_active
        toggle survives restarts.
        """
        inserted = 0
        with self.engine.begin() as conn:
            existing = {r.name for r in conn.execute(select(_roles.c.name)).fetchall()}
            for role in roles:
                if role.name in existing:
                    continue
                conn.execute(
                    _roles.insert().values(
                        name=role.name,
                        display_name=role.display_name,
                        description=role.description,
                        priority=role.priority,
                        is_system_role=role.is_system_role,
                        is_active=role.is_active,
                    )
                )
                inserted += 1
        if inserted:
            logger.info("Seeded %d catalog roles", inserted)
        return inserted

    def get_role(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        """Return every stored role ordered by priority (ascending), then name."""
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.priority, _roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def set_role_active(self, name: str, is_active: bool) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_roles.update().where(_roles.c.name == name).values(is_active=is_active))
        return result.rowcount > 0

    def get_roles_for(self, identity_id: int) -> list[Role]:
        """Return the roles assigned to an identity, unordered."""
        stmt = (
            select(_roles)
            .select_from(_roles.join(_user_roles, _user_roles.c.role_id == _roles.c.id))
            .where(_user_roles.c.user_id == identity_id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_role(r) for r in rows]

    def assign_role(self, identity_id: int, role_name: str) -> bool:
        """Attach a role to an identity. Returns False if the role does not exist.

        Assigning a role the identity already holds is a no-op that returns True.
        """
        with self.engine.begin() as conn:
            role_id = conn.execute(select(_roles.c.id).where(_roles.c.name == role_name)).scalar()
            if role_id is None:
                return False
            already = conn.execute(
                select(_user_roles.c.role_id).where(
                    (_user_roles.c.user_id == identity_id) & (_user_roles.c.role_id == role_id)
                )
            ).first()
            if already is None:
                self._link_role(conn, identity_id, role_id)
        return True

    def _link_role(self, conn, identity_id: int, role_id: int) -> None:
        conn.execute(_user_roles.insert().values(user_id=identity_id, role_id=role_id))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _identity_values(identity: Identity, now: str) -> dict:
    return {
        "username": identity.username,
        "email": identity.email,
        "password_hash": identity.password_hash,
        "full_name": identity.full_name,
        "department": identity.department,
        "position": identity.position,
        "phone_number": identity.phone_number,
        "is_active": identity.is_active,
        "is_locked": identity.is_locked,
        "locked_at": identity.locked_at,
        "failed_login_attempts": identity.failed_login_attempts,
        "last_login_at": identity.last_login_at,
        "updated_at": now,
    }


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        full_name=row.full_name,
        department=row.department,
        position=row.position,
        phone_number=row.phone_number,
        is_active=bool(row.is_active),
        is_locked=bool(row.is_locked),
        locked_at=row.locked_at,
        failed_login_attempts=row.failed_login_attempts,
        last_login_at=row.last_login_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        display_name=row.display_name,
        description=row.description or "",
        priority=row.priority,
        is_system_role=bool(row.is_system_role),
        is_active=bool(row.is_active),
    )
