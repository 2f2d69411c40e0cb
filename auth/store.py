"""
auth/store.py -- SQLAlchemy Core persistence layer for staff accounts.

Pattern: Repository + Data Mapper (same as events/store.py).
UserStore is the repository; _row_to_user is the mapper. Engine, route and
seeding code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  verification_token is UNIQUE. SQLite and PostgreSQL both treat NULLs as
  distinct in UNIQUE constraints, so every verified user can hold NULL.

DB path: auth/eventdesk.db unless DATABASE_URL is set.

Layer rule: no imports from api/, events/, or cache/.

Failure policy:
  Methods on the authentication path (get_by_email, get_by_id,
  update_verification) convert SQLAlchemyError into StoreUnavailableError so
  the engine can propagate it as an infrastructure failure. Provisioning
  methods let IntegrityError through -- duplicate emails are a caller error.
"""

from __future__ import annotations

import uuid
from pathlib import Path

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import StoreError, StoreUnavailableError
from auth.models import Role, User
from core.config import now_iso

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'eventdesk.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("uid", String(50), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True, index=True),
    Column("phone", String(20)),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, index=True),
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("verification_token", String(255), unique=True),
    Column("campus", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers (shared with events/store.py)
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases silently ignore it.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an Engine with SQLite thread-safety and WAL configured."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        store.create_user(User(email="a@x.io", name="A", role=Role.SUPER_ADMIN, ...))
        user = store.get_by_email("a@x.io")
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Authentication path (engine collaborators)
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(str(exc), operation="get_by_email") from exc
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(str(exc), operation="get_by_id") from exc
        return _row_to_user(row) if row is not None else None

    def update_verification(self, user_id: str, *, is_verified: bool, verification_token: str | None) -> User:
        """Set the verification fields on one user and return the updated record.

        Raises StoreError if user_id does not exist. Read-after-write happens
        inside the same transaction so the returned User is what was committed.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    users.update()
                    .where(users.c.id == user_id)
                    .values(
                        is_verified=is_verified,
                        verification_token=verification_token,
                        updated_at=now_iso(),
                    )
                )
                if result.rowcount == 0:
                    raise StoreError(f"No user with id {user_id!r}")
                row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(str(exc), operation="update_verification") from exc
        return _row_to_user(row)

    # ------------------------------------------------------------------
    # Provisioning / admin
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email or uid already exists.
        """
        user_id = user.id or uuid.uuid4().hex
        stamp = now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    uid=user.uid,
                    name=user.name,
                    email=user.email,
                    phone=user.phone,
                    hashed_password=user.hashed_password,
                    role=Role(user.role).value,
                    is_verified=user.is_verified,
                    verification_token=user.verification_token,
                    campus=user.campus,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
        return user_id

    def upsert_user(self, user: User) -> tuple[str, bool]:
        """Insert the user, or update profile fields if the email already exists.

        Credentials and verification state of an existing user are left
        untouched -- re-seeding must not reset passwords or un-verify anyone.
        uid is rewritten when the caller supplies one, so a role change can
        carry its new prefix. Returns (user_id, created).
        """
        existing = self.get_by_email(user.email)
        if existing is None:
            return self.create_user(user), True
        with self.engine.begin() as conn:
            conn.execute(
                users.update()
                .where(users.c.id == existing.id)
                .values(
                    uid=user.uid or existing.uid,
                    name=user.name,
                    phone=user.phone,
                    role=Role(user.role).value,
                    campus=user.campus,
                    updated_at=now_iso(),
                )
            )
        return existing.id, False

    def list_users(self, role: Role | None = None) -> list[User]:
        """Return users ordered by email, optionally filtered by role."""
        query = users.select().order_by(users.c.email)
        if role is not None:
            query = query.where(users.c.role == Role(role).value)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def delete_all(self) -> int:
        """Remove every user. Used only by the `deseed` CLI command."""
        with self.engine.begin() as conn:
            result = conn.execute(users.delete())
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        uid=row.uid,
        name=row.name,
        email=row.email,
        phone=row.phone,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        is_verified=bool(row.is_verified),
        verification_token=row.verification_token,
        campus=row.campus,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
