"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account is the mapper. Guards, flows
and routes never touch SQL directly.

The store exposes the findOne/updateOne-style surface the auth subsystem
relies on: look up a live account by login identifier or id, and update a
single account's fields. Lockout bookkeeping goes through update_lockout()
so LoginGuard can detect a write that touched no row.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text, create_engine, event, or_, text
from sqlalchemy.engine import Engine

from auth.models import Account

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(20), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="school_admin"),
    Column("school_id", String(64)),  # NULL for superadmins
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("lockout_until", String(32)),  # ISO 8601, NULL when not locked
    Column("is_seeded", Boolean, nullable=False, server_default="0"),
    Column("is_deleted", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
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


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        store.create_account(Account(username="admin", email="a@x.io", role="superadmin",
                                     hashed_password=hash_password("secret")))
        account = store.find_by_login("admin")
        store.close()
    """

    # Fields update_account() accepts. Everything else is owned by a
    # dedicated method (lockout) or immutable (id, created_at).
    _MUTABLE_FIELDS: set = {"email", "hashed_password", "role", "school_id", "is_deleted"}

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_accounts(self) -> bool:
        """Return True if at least one live account exists."""
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users WHERE is_deleted = 0")).scalar()
        return (result or 0) > 0

    def find_by_login(self, identifier: str) -> Account | None:
        """Look up a live account whose username or email equals identifier."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    or_(_users.c.username == identifier, _users.c.email == identifier)
                    & (_users.c.is_deleted == False)  # noqa: E712
                )
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int | str) -> Account | None:
        """Look up a live account by primary key. Non-numeric ids return None."""
        try:
            pk = int(account_id)
        except (TypeError, ValueError):
            return None
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.id == pk) & (_users.c.is_deleted == False))  # noqa: E712
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def exists(self, username: str, email: str) -> Account | None:
        """Return the live account holding username or email, if any."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    or_(_users.c.username == username, _users.c.email == email)
                    & (_users.c.is_deleted == False)  # noqa: E712
                )
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. Callers treat that as a conflict.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=account.username,
                    email=account.email,
                    hashed_password=account.hashed_password,
                    role=account.role,
                    school_id=account.school_id,
                    failed_login_attempts=account.failed_login_attempts,
                    lockout_until=_to_iso(account.lockout_until),
                    is_seeded=account.is_seeded,
                    is_deleted=account.is_deleted,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_account(self, account_id: int, **fields) -> bool:
        """Update mutable fields on a live account.

        Only keys in _MUTABLE_FIELDS are accepted; unknown keys raise
        ValueError rather than being silently ignored.

        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        if not fields:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == account_id) & (_users.c.is_deleted == False))  # noqa: E712
                .values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def update_lockout(self, account_id: int, failed_login_attempts: int, lockout_until: datetime | None) -> bool:
        """Persist the lockout counter and expiry for one account.

        Returns True if a row was updated. LoginGuard treats False as a
        persistence failure.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == account_id)
                .values(
                    failed_login_attempts=failed_login_attempts,
                    lockout_until=_to_iso(lockout_until),
                    updated_at=_now_iso(),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        school_id=row.school_id,
        failed_login_attempts=row.failed_login_attempts or 0,
        lockout_until=_from_iso(row.lockout_until),
        is_seeded=bool(row.is_seeded),
        is_deleted=bool(row.is_deleted),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
