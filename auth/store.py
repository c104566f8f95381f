"""
auth/store.py -- SQLAlchemy Core persistence for the local user cache.

Pattern: Repository + Data Mapper. LocalUserStore is the repository;
_row_to_record / _row_to_role_change are the mappers. Orchestrator and route
code never touch SQL directly.

What lives here is a projection, not a source of truth. Every row is keyed by
the remote directory's user id and is rewritten whenever a login, registration,
refresh or role change touches that user. There is no invalidation: a row is
as fresh as the last flow that wrote it.

Security:
  All queries use bound parameters. No f-strings in SQL.
  list_users() only ever filters on a column from _FILTER_FIELDS; any other
  field name is dropped before a query is built.

Transactions:
  Every method runs in its own short transaction unless a Connection from
  transaction() is passed as conn=, in which case the caller's block commits
  or rolls back everything together. Nothing else spans calls -- in particular
  no transaction spans a remote call.

Concurrency:
  One store (one Engine) per process. There is no row locking; two concurrent
  role changes on one user are last-writer-wins.

Layer rule: imports core/ and directory/models only. No imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Connection, Engine

from auth.models import LocalUserRecord, RoleChange
from directory.models import RemoteUser

logger = logging.getLogger("lmsbridge.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "lms_users",
    _metadata,
    Column("remote_user_id", Integer, primary_key=True, autoincrement=False),
    Column("username", String(100), nullable=False),
    Column("email", String(255)),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("role", String(20), nullable=False, server_default="student"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", String(32)),  # ISO 8601, tracked locally only
    Column("updated_at", String(32), nullable=False),
)

_role_changes = Table(
    "role_changes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("remote_user_id", Integer, nullable=False, index=True),
    Column("old_role", String(20)),
    Column("new_role", String(20), nullable=False),
    Column("changed_at", String(32), nullable=False),
)

# Columns a caller may filter list_users() on. Anything else is ignored.
_FILTER_FIELDS: frozenset[str] = frozenset({"first_name", "last_name", "username", "email"})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind the writer."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class LocalUserStore:
    """Repository for cached LocalUserRecord rows and the role audit trail.

    Usage:
        store = LocalUserStore("sqlite:///:memory:")
        store.upsert(remote_user, "student")
        record = store.find_by_remote_id(42)
        with store.transaction() as conn:
            store.update_role(42, "teacher", conn=conn)
            store.record_role_change(42, "student", "teacher", conn=conn)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Transaction scoping
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a Connection inside BEGIN; COMMIT on exit, ROLLBACK on exception."""
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def _connection(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self.engine.begin() as own:
            yield own

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, remote_user: RemoteUser, role: str, *, conn: Connection | None = None) -> LocalUserRecord:
        """Insert or refresh the projection of remote_user. Idempotent.

        The key (remote_user_id) is never rewritten. On update, projection
        fields the remote record did not carry (None, e.g. email from
        get_site_info) keep their cached value. last_login is left alone.
        """
        values = {
            "username": remote_user.username,
            "email": remote_user.email,
            "first_name": remote_user.firstname,
            "last_name": remote_user.lastname,
            "role": role,
            "is_active": 0 if remote_user.suspended else 1,
            "updated_at": _now_iso(),
        }
        with self._connection(conn) as c:
            changed = {k: v for k, v in values.items() if v is not None}
            result = c.execute(_users.update().where(_users.c.remote_user_id == remote_user.id).values(**changed))
            if result.rowcount == 0:
                c.execute(_users.insert().values(remote_user_id=remote_user.id, **values))
                logger.info("Cached new user remote_id=%s role=%s", remote_user.id, role)
            row = c.execute(_users.select().where(_users.c.remote_user_id == remote_user.id)).fetchone()
        return _row_to_record(row)

    def update_role(self, remote_user_id: int, role: str, *, conn: Connection | None = None) -> bool:
        """Set the cached role. The caller validates role first.

        Returns True if a row was updated, False if the user is not cached.
        """
        with self._connection(conn) as c:
            result = c.execute(
                _users.update()
                .where(_users.c.remote_user_id == remote_user_id)
                .values(role=role, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def touch_last_login(self, remote_user_id: int, *, conn: Connection | None = None) -> bool:
        """Stamp the current UTC time as last_login. Returns False if not cached."""
        with self._connection(conn) as c:
            result = c.execute(
                _users.update().where(_users.c.remote_user_id == remote_user_id).values(last_login=_now_iso())
            )
        return result.rowcount > 0

    def record_role_change(
        self,
        remote_user_id: int,
        old_role: str | None,
        new_role: str,
        *,
        conn: Connection | None = None,
    ) -> int:
        """Append an audit row and return its id."""
        with self._connection(conn) as c:
            result = c.execute(
                _role_changes.insert().values(
                    remote_user_id=remote_user_id,
                    old_role=old_role,
                    new_role=new_role,
                    changed_at=_now_iso(),
                )
            )
        return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_remote_id(self, remote_user_id: int, *, conn: Connection | None = None) -> LocalUserRecord | None:
        with self._connection(conn) as c:
            row = c.execute(_users.select().where(_users.c.remote_user_id == remote_user_id)).fetchone()
        return _row_to_record(row) if row is not None else None

    def list_users(self, field: str | None = None, value: str | None = None) -> list[LocalUserRecord]:
        """Return active records ordered by username, optionally filtered by exact match.

        field must be one of first_name, last_name, username, email. Any other
        field is ignored and the call behaves as if no filter was given.
        """
        query = _users.select().where(_users.c.is_active == 1)
        if field in _FILTER_FIELDS and value is not None:
            query = query.where(_users.c[field] == value)
        elif field is not None:
            logger.debug("Ignoring user list filter on field %r", field)
        with self.engine.connect() as c:
            rows = c.execute(query.order_by(_users.c.username)).fetchall()
        return [_row_to_record(r) for r in rows]

    def role_history(self, remote_user_id: int) -> list[RoleChange]:
        """Audit rows for one user, newest first."""
        with self.engine.connect() as c:
            rows = c.execute(
                _role_changes.select()
                .where(_role_changes.c.remote_user_id == remote_user_id)
                .order_by(_role_changes.c.id.desc())
            ).fetchall()
        return [_row_to_role_change(r) for r in rows]

    def ping(self) -> bool:
        """Cheap liveness check for the health endpoint."""
        with self.engine.connect() as c:
            return c.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_record(row) -> LocalUserRecord:
    return LocalUserRecord(
        remote_user_id=row.remote_user_id,
        username=row.username,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role,
        is_active=bool(row.is_active),
        last_login=row.last_login,
        updated_at=row.updated_at,
    )


def _row_to_role_change(row) -> RoleChange:
    return RoleChange(
        id=row.id,
        remote_user_id=row.remote_user_id,
        old_role=row.old_role,
        new_role=row.new_role,
        changed_at=row.changed_at,
    )
