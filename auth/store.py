"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Route and service code never touches SQL
directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  username and email carry UNIQUE constraints. create_account() turns the
  resulting IntegrityError into DuplicateAccount so a race between two
  registrations for the same email still yields exactly one row and a clean
  409 for the loser.

  role is constrained by a CHECK to "user" / "admin".

DB path: parkingpilot.db in the working directory unless DATABASE_URL is set.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, Float, Integer, MetaData, String, Table, Text, create_engine, event, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Account
from core.errors import DuplicateAccount

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(100), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(10), nullable=False, server_default="user"),
    Column("phone_number", String(20)),
    Column("employee_student_id", String(50)),
    Column("reset_token_hash", String(64), unique=True),
    Column("reset_token_expiry", Float),
    Column("created_at", String(32), nullable=False),
    CheckConstraint("role IN ('user', 'admin')", name="ck_users_role"),
)

# Fields a user may change on their own profile.
_PROFILE_FIELDS = {"username", "phone_number", "employee_student_id"}


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """WAL journal for concurrent readers; set per connection because
    SQLite PRAGMAs are not inherited by new pooled connections."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore("sqlite:///parkingpilot.db")
        account_id = store.create_account(Account(username="sai", email="sai@x.com", password_hash=h))
        account = store.get_by_email("sai@x.com")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///parkingpilot.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned ID.

        Raises DuplicateAccount if the username or email is already taken.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=account.username,
                        email=account.email.lower(),
                        password_hash=account.password_hash,
                        role=account.role,
                        phone_number=account.phone_number,
                        employee_student_id=account.employee_student_id,
                        created_at=_now_iso(),
                    )
                )
        except IntegrityError as exc:
            raise DuplicateAccount() from exc
        return result.inserted_primary_key[0]

    def update_profile(self, account_id: int, **fields) -> bool:
        """Update self-service profile fields. Returns True if a row changed.

        Raises ValueError for fields outside the profile whitelist and
        DuplicateAccount if a new username collides.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {unknown!r}")
        if not fields:
            return False
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_users.update().where(_users.c.id == account_id).values(**fields))
        except IntegrityError as exc:
            raise DuplicateAccount("That username is already taken.") from exc
        return result.rowcount > 0

    def set_reset_token(self, account_id: int, token_hash: str | None, expiry: float | None) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == account_id)
                .values(reset_token_hash=token_hash, reset_token_expiry=expiry)
            )

    def reset_password(self, token_hash: str, password_hash: str, now: float) -> bool:
        """Store a new password hash and clear the reset token in one statement.

        The row only changes while it still carries token_hash with an expiry
        at or after now, so of two requests racing on one token exactly one
        gets True.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.reset_token_hash == token_hash, _users.c.reset_token_expiry >= now)
                .values(password_hash=password_hash, reset_token_hash=None, reset_token_expiry=None)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, account_id: int) -> Account | None:
        return self._fetch_one(_users.c.id == account_id)

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by email. Emails are stored lower-cased."""
        return self._fetch_one(_users.c.email == email.lower())

    def get_by_username(self, username: str) -> Account | None:
        return self._fetch_one(_users.c.username == username)

    def find_by_email_or_username(self, email: str, username: str) -> Account | None:
        return self._fetch_one(or_(_users.c.email == email.lower(), _users.c.username == username))

    def get_by_reset_token_hash(self, token_hash: str) -> Account | None:
        return self._fetch_one(_users.c.reset_token_hash == token_hash)

    def list_accounts(self) -> list[Account]:
        """Return all accounts ordered by id. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_account(r) for r in rows]

    def has_admin(self) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.role == "admin").limit(1)).fetchone()
        return row is not None

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()

    def _fetch_one(self, condition) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition)).fetchone()
        return _row_to_account(row) if row is not None else None


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        phone_number=row.phone_number,
        employee_student_id=row.employee_student_id,
        reset_token_hash=row.reset_token_hash,
        reset_token_expiry=row.reset_token_expiry,
        created_at=row.created_at,
    )
