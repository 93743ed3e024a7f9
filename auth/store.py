"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and dependency code never touches SQL directly.

Identity writes:
  create_user() and update_user() are the only ways is_admin / role_id get
  written, and both pass their inputs through rbac.identity.resolve_identity().
  update_user() does so on every call, even when neither field is supplied,
  so a record left in an inconsistent state (admin with a role) is repaired by
  the next write that touches it.

Write listeners:
  add_write_listener(fn) registers fn(user_id) to be called synchronously
  after every committed create / update / delete. The API wires the identity
  reconciler's cache invalidation and the role-membership event here. The
  write has already committed when listeners run, so a failing listener is
  logged and does not turn the write into an error.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: auth/itam_users.db unless USER_DB_URL is set.

Layer rule: no imports from api/ or activity/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine

from auth.models import User
from rbac.identity import UNSET, resolve_identity

logger = logging.getLogger("itam.auth.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'itam_users.db'}"

# Columns update_user() accepts besides the identity pair.
_MUTABLE_FIELDS = frozenset({"username", "hashed_password", "email", "is_active"})

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("email", String(255)),
    Column("is_admin", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("role_id", Integer),  # no FK: roles live in the in-memory catalog
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", Text),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(username="alice", role_id=4, hashed_password=hash_password("secret")))
        store.update_user(uid, is_admin=True)      # role_id is cleared
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self._listeners: list[Callable[[int], None]] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_write_listener(self, listener: Callable[[int], None]) -> None:
        self._listeners.append(listener)

    def _notify(self, user_id: int) -> None:
        for listener in self._listeners:
            try:
                listener(user_id)
            except Exception:
                logger.exception("User write listener %r failed for user %s", listener, user_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_active_admins(self) -> int:
        """Return the number of active admin users.

        Used by the user routes to refuse demoting, deactivating or deleting
        the last admin.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where((_users.c.is_admin == 1) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        identity = resolve_identity(user.is_admin, user.role_id)
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    hashed_password=user.hashed_password,
                    email=user.email,
                    is_admin=1 if identity.is_admin else 0,
                    role_id=identity.role_id,
                    is_active=1 if user.is_active else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            user_id = result.inserted_primary_key[0]
        logger.info("Created user %d (%s) admin=%s role=%s", user_id, user.username, *identity)
        self._notify(user_id)
        return user_id

    def update_user(self, user_id: int, is_admin=UNSET, role_id=UNSET, **fields) -> User | None:
        """Update an existing user and return the stored result.

        is_admin / role_id: omit to leave the identity as it is (it is still
        re-normalized), pass role_id=None to clear the role.
        Other accepted fields: username, hashed_password, email, is_active.

        Returns None if user_id does not exist.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user field(s): {', '.join(sorted(unknown))}")
        existing = self.get_by_id(user_id)
        if existing is None:
            return None

        identity = resolve_identity(is_admin, role_id, existing)
        values = dict(fields)
        if "is_active" in values:
            values["is_active"] = 1 if values["is_active"] else 0
        values["is_admin"] = 1 if identity.is_admin else 0
        values["role_id"] = identity.role_id

        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        if (existing.is_admin, existing.role_id) != tuple(identity):
            logger.info(
                "User %d identity: admin=%s role=%s -> admin=%s role=%s",
                user_id,
                existing.is_admin,
                existing.role_id,
                *identity,
            )
        self._notify(user_id)
        return self.get_by_id(user_id)

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Callers must check the last-admin and protected-account rules before
        calling this method -- the store does not enforce them.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        deleted = result.rowcount > 0
        if deleted:
            self._notify(user_id)
        return deleted

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login. Not an identity write."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        email=row.email,
        is_admin=bool(row.is_admin),
        role_id=row.role_id,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        last_login=row.last_login,
    )
