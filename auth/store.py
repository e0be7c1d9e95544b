"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user /
_row_to_otp are the mappers. Services never touch SQL directly.

Concurrency:
  The invariants that matter under concurrent requests are each carried by a
  single statement, never by read-then-write in Python:
    - OTP upsert: INSERT ... ON CONFLICT(email) DO UPDATE -- at most one
      outstanding code per email.
    - OTP consume: DELETE ... WHERE email AND code -- rowcount tells the caller
      whether it won.
    - OAuth upsert: INSERT ... ON CONFLICT(provider, provider_id) DO UPDATE --
      concurrent callbacks for one identity converge on one row.
    - Superuser: partial UNIQUE index on role='super_admin'.

  provider_id is NULL for local accounts. Both SQLite and PostgreSQL treat
  NULLs as distinct in UNIQUE indexes, so any number of local accounts can
  share provider="" without tripping the identity index.

Errors:
  Every SQLAlchemyError is re-raised as StorageError (DuplicateRecord for
  IntegrityError), chained with `from` so the driver error stays in the log.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Float,
    Index,
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
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateRecord, StorageError
from auth.models import OTPRecord, Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for OAuth-only users
    Column("role", String(30), nullable=False, server_default=Role.USER.value),
    Column("provider", String(30), nullable=False, server_default=""),  # "" = local
    Column("provider_id", String(255)),  # NULL for local accounts
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Index("uq_users_provider_identity", "provider", "provider_id", unique=True),
    Index(
        "uq_users_single_super_admin",
        "role",
        unique=True,
        sqlite_where=text("role = 'super_admin'"),
        postgresql_where=text("role = 'super_admin'"),
    ),
)

_otps = Table(
    "otps",
    _metadata,
    Column("email", String(255), primary_key=True),
    Column("code", String(6), nullable=False),
    Column("expires_at", Float, nullable=False),  # UNIX seconds
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _iso(moment: datetime | None = None) -> str:
    return (moment or datetime.now(timezone.utc)).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and OTPRecord entities.

    Usage:
        store = UserStore("sqlite:///gatehouse.db")
        store.create_user(User(email="a@b.test", role="user", password_hash=hash_password("secret")))
        user = store.get_by_email("a@b.test")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        if self.engine.dialect.name == "postgresql":
            self._insert = postgresql.insert
        else:
            self._insert = sqlite.insert
        with self._connect() as conn:
            _metadata.create_all(conn)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError as exc:
            raise DuplicateRecord("uniqueness constraint violated") from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"database error: {exc.__class__.__name__}") from exc

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User, now: datetime | None = None) -> int:
        """Insert a new user and return its assigned database ID.

        Raises DuplicateRecord if the email, the provider identity, or the
        single super_admin slot is already taken.
        """
        stamp = _iso(now)
        with self._connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    password_hash=user.password_hash,
                    role=getattr(user.role, "value", user.role),
                    provider=user.provider,
                    provider_id=user.provider_id,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_provider_identity(self, provider: str, provider_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.provider == provider) & (_users.c.provider_id == provider_id))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def has_role(self, role: str) -> bool:
        """Return True if at least one user holds role."""
        role = getattr(role, "value", role)
        with self._connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.role == role).limit(1)).fetchone()
        return row is not None

    def upsert_provider_identity(self, provider: str, provider_id: str, email: str, now: datetime) -> None:
        """Create or refresh the row owned by (provider, provider_id) in one statement.

        Insert: role=user, created_at=updated_at=now.
        Every call: email and updated_at are overwritten. role and created_at
        are never touched after the first insert.
        """
        stamp = _iso(now)
        stmt = self._insert(_users).values(
            email=email,
            role=Role.USER.value,
            provider=provider,
            provider_id=provider_id,
            created_at=stamp,
            updated_at=stamp,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_users.c.provider, _users.c.provider_id],
            set_={"email": stmt.excluded.email, "updated_at": stmt.excluded.updated_at},
        )
        with self._connect() as conn:
            conn.execute(stmt)
            conn.commit()

    def update_password(self, email: str, password_hash: str, now: datetime) -> bool:
        """Replace the password hash for email. Returns False if no row matched."""
        with self._connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.email == email)
                .values(password_hash=password_hash, updated_at=_iso(now))
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int, now: datetime) -> None:
        stamp = _iso(now)
        with self._connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=stamp, updated_at=stamp))
            conn.commit()

    # ------------------------------------------------------------------
    # OTP queries
    # ------------------------------------------------------------------

    def upsert_otp(self, record: OTPRecord) -> None:
        """Store record, replacing any outstanding code for the same email."""
        stmt = self._insert(_otps).values(
            email=record.email,
            code=record.code,
            expires_at=record.expires_at.timestamp(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_otps.c.email],
            set_={"code": stmt.excluded.code, "expires_at": stmt.excluded.expires_at},
        )
        with self._connect() as conn:
            conn.execute(stmt)
            conn.commit()

    def find_otp(self, email: str, code: str, now: datetime) -> OTPRecord | None:
        """Return the record matching email and code exactly, if it expires after now.

        Expired rows are not deleted here; they stay until overwritten.
        """
        with self._connect() as conn:
            row = conn.execute(
                _otps.select().where(
                    (_otps.c.email == email) & (_otps.c.code == code) & (_otps.c.expires_at > now.timestamp())
                )
            ).fetchone()
        return _row_to_otp(row) if row is not None else None

    def delete_otp(self, email: str, code: str | None = None) -> bool:
        """Delete the outstanding record for email. Returns True if a row was removed.

        Passing code makes the delete conditional on the code still matching,
        so two concurrent verifications of one code cannot both win.
        """
        condition = _otps.c.email == email
        if code is not None:
            condition = condition & (_otps.c.code == code)
        with self._connect() as conn:
            result = conn.execute(_otps.delete().where(condition))
            conn.commit()
        return result.rowcount > 0

    def count_otps(self, email: str) -> int:
        with self._connect() as conn:
            result = conn.execute(select(func.count()).select_from(_otps).where(_otps.c.email == email)).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        provider=row.provider or "",
        provider_id=row.provider_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )


def _row_to_otp(row) -> OTPRecord:
    return OTPRecord(
        email=row.email,
        code=row.code,
        expires_at=datetime.fromtimestamp(row.expires_at, timezone.utc),
    )
