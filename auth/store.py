"""
auth/store.py -- SQLAlchemy Core persistence layer for credential records.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_record is the mapper.
Route, verifier and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  find_by_email() selects an explicit column projection -- the same fields
  the login pipeline needs and nothing else.

DB URL: settings.database_url (defaults to auth/library_auth.db).

Layer rule: no imports from api/, web/, core/, or cache/.

Schema migration notes:
  status / avatar / username columns were added after the first release.
  _ensure_profile_columns() adds any that are missing via ALTER TABLE ADD
  COLUMN so existing DBs are upgraded on first startup.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine

from auth.models import CredentialRecord

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True, index=True),
    Column("password_hash", Text),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("status", String(30)),  # NULL means active
    Column("name", String(255)),
    Column("username", String(255)),
    Column("avatar", Text),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),  # ISO 8601 timestamp of last successful login
)

# Columns read by the login pipeline.
_LOGIN_PROJECTION = (
    _users.c.id,
    _users.c.name,
    _users.c.email,
    _users.c.password_hash,
    _users.c.role,
    _users.c.status,
    _users.c.username,
    _users.c.avatar,
    _users.c.created_at,
    _users.c.last_login,
)

_PROFILE_COLUMNS = {"status": "TEXT", "username": "TEXT", "avatar": "TEXT", "last_login": "TEXT"}


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


class CredentialStore:
    """Repository for CredentialRecord entities.

    Usage:
        store = CredentialStore("sqlite:///library_auth.db")
        store.create_user(CredentialRecord(email="a@b.com", password_hash=hash_password("pw")))
        record = store.find_by_email("a@b.com")
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
        if db_url.startswith("sqlite"):
            self._ensure_profile_columns()

    def _ensure_profile_columns(self) -> None:
        """Add late-arriving profile columns to an existing users table.

        SQLite does not support IF NOT EXISTS in ALTER TABLE. PRAGMA
        table_info is checked first so the migration is idempotent.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(text("PRAGMA table_info(users)")).fetchall()
            existing_cols = {row[1] for row in rows}
            missing = [name for name in _PROFILE_COLUMNS if name not in existing_cols]
            for name in missing:
                # Column names come from the fixed _PROFILE_COLUMNS mapping, never input.
                conn.execute(text(f"ALTER TABLE users ADD COLUMN {name} {_PROFILE_COLUMNS[name]}"))  # noqa: S608
            if missing:
                conn.commit()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> CredentialRecord | None:
        """Return the login projection for an exact email match, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(select(*_LOGIN_PROJECTION).where(_users.c.email == email)).fetchone()
        return _row_to_record(row) if row is not None else None

    def get_by_id(self, user_id: int) -> CredentialRecord | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(select(*_LOGIN_PROJECTION).where(_users.c.id == user_id)).fetchone()
        return _row_to_record(row) if row is not None else None

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, record: CredentialRecord) -> int:
        """Insert a credential record and return its assigned database ID.

        Accounts are provisioned by the portal admin tooling; the login
        pipeline itself never creates users. Raises
        sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=record.email,
                    password_hash=record.password_hash,
                    role=record.role or "user",
                    status=record.status,
                    name=record.name,
                    username=record.username,
                    avatar=record.avatar,
                    created_at=record.created_at or _now_iso(),
                    last_login=record.last_login,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_status(self, user_id: int, status: str | None) -> bool:
        """Set the account status. Returns True if a row was updated."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(status=status))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user.

        Called in the background after every store-verified login.
        """
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_record(row) -> CredentialRecord:
    return CredentialRecord(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        status=row.status,
        name=row.name,
        username=row.username,
        avatar=row.avatar,
        created_at=row.created_at,
        last_login=row.last_login,
    )
