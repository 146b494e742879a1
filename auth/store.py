"""
auth/store.py -- User directory: the persistence boundary of the identity core.

UserDirectory is the Protocol every service depends on. UserStore is the
default SQLAlchemy Core implementation.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Service code never touches SQL directly.

Every lookup that can miss raises a typed NotFound error (UserNotFound,
RoleNotFound, PlatformNotFound) instead of returning None, so callers cannot
forget the miss case.

Security:
  All queries use bound parameters. No f-strings in SQL.

  users.email is UNIQUE: one account per email across all platforms.
  UNIQUE(platform_id, external_id) identifies a provider-linked account.
  Local accounts store NULL external_id, and NULLs never collide under SQL
  UNIQUE, which is the behavior we want here.

Layer rule: no imports from api/, cache/, mail/, or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import PlatformNotFound, RoleNotFound, UserAlreadyExists, UserNotFound
from auth.models import Platform, Role, User

_DEFAULT_DB_URL = "sqlite:///authcore.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "user_roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("rank", Integer, nullable=False, unique=True),
)

_platforms = Table(
    "platforms",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for OAuth-only accounts
    Column("role_id", Integer, ForeignKey("user_roles.id"), nullable=False),
    Column("platform_id", Integer, ForeignKey("platforms.id"), nullable=False),
    Column("external_id", String(255)),  # provider's stable subject id
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("platform_id", "external_id", name="uq_users_platform_external"),
)


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class UserDirectory(Protocol):
    def find_by_email(self, email: str) -> User: ...

    def find_by_id(self, user_id: int) -> User: ...

    def find_by_external(self, platform_name: str, external_id: str) -> User: ...

    def save(self, user: User) -> User: ...

    def update_password(self, user_id: int, hashed_password: str) -> None: ...

    def activate(self, user_id: int) -> None: ...

    def find_role_by_name(self, name: str) -> Role: ...

    def find_platform_by_name(self, name: str) -> Platform: ...

    def upsert_role(self, role: Role) -> Role: ...

    def upsert_platform(self, platform: Platform) -> Platform: ...

    def list_users(self) -> list[User]: ...


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign keys on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """SQLAlchemy Core repository for users, roles and platforms.

    Usage:
        store = UserStore("sqlite:///authcore.db")
        bootstrap(store)
        user = store.find_by_email("alice@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def _user_select(self):
        return select(
            _users,
            _roles.c.name.label("role_name"),
            _roles.c.rank.label("role_rank"),
            _platforms.c.name.label("platform_name"),
        ).select_from(
            _users.join(_roles, _users.c.role_id == _roles.c.id).join(
                _platforms, _users.c.platform_id == _platforms.c.id
            )
        )

    def _fetch_one_user(self, condition) -> User:
        with self.engine.connect() as conn:
            row = conn.execute(self._user_select().where(condition)).fetchone()
        if row is None:
            raise UserNotFound()
        return _row_to_user(row)

    def find_by_email(self, email: str) -> User:
        """Exact email match. Raises UserNotFound."""
        return self._fetch_one_user(_users.c.email == email)

    def find_by_id(self, user_id: int) -> User:
        return self._fetch_one_user(_users.c.id == user_id)

    def find_by_external(self, platform_name: str, external_id: str) -> User:
        """Look up a provider-linked account by (platform, subject id)."""
        return self._fetch_one_user((_platforms.c.name == platform_name) & (_users.c.external_id == external_id))

    def list_users(self) -> list[User]:
        """All users ordered by id. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(self._user_select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def save(self, user: User) -> User:
        """Insert a new user and return it as stored (id and timestamps filled).

        role.id and platform.id must already be set -- resolve them with
        find_role_by_name() / find_platform_by_name() first. Raises
        UserAlreadyExists when the email (or the platform/external id pair)
        is already taken, including when a concurrent request won the race.
        """
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        name=user.name,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        role_id=user.role.id,
                        platform_id=user.platform.id,
                        external_id=user.external_id,
                        is_verified=user.is_verified,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
                user_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise UserAlreadyExists() from exc
        return self.find_by_id(user_id)

    def update_password(self, user_id: int, hashed_password: str) -> None:
        self._update_user(user_id, hashed_password=hashed_password)

    def activate(self, user_id: int) -> None:
        """Set is_verified. Activating an already verified user changes nothing."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.is_verified.is_(False)))
                .values(is_verified=True, updated_at=_now_iso())
            )
            conn.commit()
        if result.rowcount == 0:
            # Either already verified (fine) or missing (not fine).
            self.find_by_id(user_id)

    def _update_user(self, user_id: int, **fields) -> None:
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        if result.rowcount == 0:
            raise UserNotFound()

    # ------------------------------------------------------------------
    # Roles and platforms
    # ------------------------------------------------------------------

    def find_role_by_name(self, name: str) -> Role:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        if row is None:
            raise RoleNotFound()
        return Role(id=row.id, name=row.name, rank=row.rank)

    def find_platform_by_name(self, name: str) -> Platform:
        with self.engine.connect() as conn:
            row = conn.execute(_platforms.select().where(_platforms.c.name == name)).fetchone()
        if row is None:
            raise PlatformNotFound()
        return Platform(id=row.id, name=row.name)

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.rank.desc())).fetchall()
        return [Role(id=r.id, name=r.name, rank=r.rank) for r in rows]

    def upsert_role(self, role: Role) -> Role:
        """Insert the role if no role with that name exists. Idempotent.

        Roles are immutable after bootstrap: an existing row is returned as-is
        even if its rank differs from the argument.
        """
        try:
            return self.find_role_by_name(role.name)
        except RoleNotFound:
            pass
        try:
            with self.engine.connect() as conn:
                conn.execute(_roles.insert().values(name=role.name, rank=role.rank))
                conn.commit()
        except IntegrityError:
            # Another process bootstrapped the same row first.
            pass
        return self.find_role_by_name(role.name)

    def upsert_platform(self, platform: Platform) -> Platform:
        try:
            return self.find_platform_by_name(platform.name)
        except PlatformNotFound:
            pass
        try:
            with self.engine.connect() as conn:
                conn.execute(_platforms.insert().values(name=platform.name))
                conn.commit()
        except IntegrityError:
            pass
        return self.find_platform_by_name(platform.name)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(id=row.role_id, name=row.role_name, rank=row.role_rank),
        platform=Platform(id=row.platform_id, name=row.platform_name),
        external_id=row.external_id,
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
