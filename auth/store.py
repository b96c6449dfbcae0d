"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_agency /
_row_to_reset_token are the mappers. Route and service code never touches
SQL directly.

Lifecycle: one UserStore per process, constructed by the app lifespan (or the
CLI) and closed on shutdown. Nothing in this module holds a global handle.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  password_reset_tokens has UNIQUE(user_id), so two concurrent issuers for
  the same user cannot both leave a live row. replace_reset_token() and
  consume_reset_token() each run in a single transaction.

  On SQLite every transaction starts with BEGIN IMMEDIATE. The write lock is
  taken up front, so concurrent writers queue on the busy timeout instead of
  failing with a lock-upgrade deadlock. consume_reset_token() uses a
  conditional DELETE and trusts its rowcount to pick one winner.

Timestamps are ISO 8601 UTC strings with fixed-width microseconds, so string
comparison in SQL orders them correctly.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import Agency, PasswordResetToken, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_agencies = Table(
    "agencies",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),  # stored lowercased
    Column("hashed_password", Text),
    Column("role", String(30), nullable=False, server_default="USER"),
    Column("tenant_id", Integer, ForeignKey("agencies.id")),
    Column("display_name", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _sqlite_on_connect(dbapi_conn, connection_record) -> None:
    """Per-connection PRAGMAs and manual transaction control.

    isolation_level=None stops pysqlite from emitting its own deferred BEGIN,
    so _sqlite_on_begin() decides how transactions start. WAL lets readers
    proceed during a write on file databases; in-memory databases ignore it.
    """
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_on_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN IMMEDIATE")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(dt: datetime) -> str:
    """Render a datetime as fixed-width ISO 8601 UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Agency, and PasswordResetToken entities.

    Usage:
        store = UserStore("sqlite:///tripdesk.db")
        uid = store.create_user(User(email="a@b.com", role="AGENCY", hashed_password=hash_password("...")))
        user = store.get_by_email("a@b.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _sqlite_on_connect)
            event.listen(self.engine, "begin", _sqlite_on_begin)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.begin() as conn:
            return self._insert_user(conn, user)

    def _insert_user(self, conn, user: User) -> int:
        result = conn.execute(
            _users.insert().values(
                email=normalize_email(user.email),
                hashed_password=user.hashed_password,
                role=user.role,
                tenant_id=user.tenant_id,
                display_name=user.display_name,
                created_at=_now_iso(),
                is_active=1 if user.is_active else 0,
            )
        )
        return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """All users ordered by email. Platform-admin operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def list_users_by_tenant(self, tenant_id: int) -> list[User]:
        """Users belonging to one agency, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.tenant_id == tenant_id).order_by(_users.c.created_at.desc())
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def set_active(self, user_id: int, active: bool) -> bool:
        """Enable or disable an account. Returns False if user_id was not found.

        A disabled account cannot log in or request a reset, and sessions it
        already holds stop resolving (see auth.dependencies.try_get_identity).
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(is_active=1 if active else 0))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Agencies (tenants)
    # ------------------------------------------------------------------

    def create_agency(self, agency: Agency) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_agencies.insert().values(name=agency.name, created_at=_now_iso()))
            return result.inserted_primary_key[0]

    def create_agency_with_owner(self, agency: Agency, owner: User) -> tuple[int, int]:
        """Create a tenant and its first user atomically. Returns (agency_id, user_id).

        A duplicate owner email raises IntegrityError and rolls back the agency
        insert too, so failed signups leave no orphan tenant.
        """
        with self.engine.begin() as conn:
            agency_id = conn.execute(
                _agencies.insert().values(name=agency.name, created_at=_now_iso())
            ).inserted_primary_key[0]
            owner.tenant_id = agency_id
            user_id = self._insert_user(conn, owner)
        return agency_id, user_id

    def get_agency(self, agency_id: int) -> Agency | None:
        with self.engine.connect() as conn:
            row = conn.execute(_agencies.select().where(_agencies.c.id == agency_id)).fetchone()
        return _row_to_agency(row) if row is not None else None

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def replace_reset_token(self, user_id: int, token_hash: str, expires_at: datetime) -> int:
        """Delete the user's pending token (if any) and insert a new one, atomically."""
        with self.engine.begin() as conn:
            conn.execute(_reset_tokens.delete().where(_reset_tokens.c.user_id == user_id))
            result = conn.execute(
                _reset_tokens.insert().values(
                    user_id=user_id,
                    token_hash=token_hash,
                    expires_at=to_iso(expires_at),
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_reset_token_by_hash(self, token_hash: str) -> PasswordResetToken | None:
        """O(1) lookup via the UNIQUE index on token_hash. Expired rows are returned too."""
        with self.engine.connect() as conn:
            row = conn.execute(_reset_tokens.select().where(_reset_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def get_reset_token_for_user(self, user_id: int) -> PasswordResetToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_reset_tokens.select().where(_reset_tokens.c.user_id == user_id)).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def count_reset_tokens(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_reset_tokens).where(_reset_tokens.c.user_id == user_id)
            ).scalar()
        return result or 0

    def delete_reset_token(self, token_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_reset_tokens.delete().where(_reset_tokens.c.id == token_id))
        return result.rowcount > 0

    def consume_reset_token(self, token_id: int, user_id: int, hashed_password: str, now: datetime) -> bool:
        """Delete a live token and set the owner's new password in one transaction.

        The DELETE only matches a row that still exists and has not expired by
        `now`. Zero rows deleted means another request consumed it first (or it
        expired in between); the password is left untouched and False returned.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(
                _reset_tokens.delete().where(
                    (_reset_tokens.c.id == token_id)
                    & (_reset_tokens.c.user_id == user_id)
                    & (_reset_tokens.c.expires_at >= to_iso(now))
                )
            )
            if deleted.rowcount != 1:
                return False
            conn.execute(_users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password))
        return True

    def purge_expired_reset_tokens(self, now: datetime) -> int:
        """Delete every token that expired before `now`. Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_reset_tokens.delete().where(_reset_tokens.c.expires_at < to_iso(now)))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        tenant_id=row.tenant_id,
        display_name=row.display_name,
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )


def _row_to_agency(row) -> Agency:
    return Agency(id=row.id, name=row.name, created_at=row.created_at)


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
