"""
auth/store.py -- SQLAlchemy Core persistence layer for identities and roles.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_role are the mappers.
Route, dependency and service code never touches SQL directly.

The sessions table is declared here as well so every auth table lives on one
MetaData and one Engine; auth/sessions.py owns the queries against it. Keeping
a single engine is what lets AuthService.change_password() update a password
hash and revoke sessions inside one transaction.

Security:
  All queries use bound parameters. No f-strings in SQL.

Transactions:
  Every write method accepts an optional `conn`. Without one, the method opens
  and commits its own transaction. With one (from UserStore.transaction()),
  it joins the caller's unit of work and the caller commits.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

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
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import AuditEntry, Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(100), unique=True),  # optional; NULLs do not collide
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("last_login", String(40)),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("display_name", String(100), nullable=False),
    Column("description", String(255)),
    Column("permissions", Text),  # JSON object
    Column("is_system", Boolean, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("assigned_at", String(40), nullable=False),
    UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
)

sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("refresh_token", String(128), nullable=False, unique=True),
    # ISO 8601 UTC with fixed microsecond precision so string order == time order.
    Column("expires_at", String(40), nullable=False, index=True),
    Column("is_revoked", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),  # no FK: audit rows outlive the rows they describe
    Column("action", String(50), nullable=False),
    Column("details", Text),  # JSON object
    Column("created_at", String(40), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Role, role assignment and audit entities.

    Usage:
        store = UserStore("sqlite:///gatekeeper.db")
        uid = store.create_user(User(email="a@example.com", hashed_password=hash_password("secret")))
        user = store.get_by_id(uid)
        store.close()
    """

    _USER_FIELDS: set = {"email", "username", "hashed_password", "first_name", "last_name", "is_active"}
    _ROLE_FIELDS: set = {"name", "display_name", "description", "permissions", "is_active"}

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Open one transaction; commit on clean exit, roll back on any exception."""
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def _use(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
        else:
            with self.engine.begin() as own:
                yield own

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User, conn: Connection | None = None) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email or username is taken.
        The service translates that into a CONFLICT error.
        """
        stamp = now_iso()
        with self._use(conn) as c:
            result = c.execute(
                users.insert().values(
                    email=user.email,
                    username=user.username,
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    is_active=user.is_active,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key, with roles resolved. None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
            return self._hydrate(conn, row)

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive), with roles resolved."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(func.lower(users.c.email) == email.lower())).fetchone()
            return self._hydrate(conn, row)

    def find_conflicting(self, email: str, username: str | None = None, exclude_id: int | None = None) -> User | None:
        """Return any user already holding this email or username.

        Used by register and profile updates to produce a precise CONFLICT
        message before the insert. The UNIQUE constraints remain the real
        guard against concurrent writers.
        """
        clauses = [func.lower(users.c.email) == email.lower()]
        if username:
            clauses.append(users.c.username == username)
        query = users.select().where(or_(*clauses))
        if exclude_id is not None:
            query = query.where(users.c.id != exclude_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        is_active: bool | None = None,
    ) -> tuple[list[User], int]:
        """Return one page of users (newest first) and the total match count."""
        query = users.select()
        count_query = select(func.count()).select_from(users)
        if search:
            pattern = f"%{search.lower()}%"
            cond = or_(
                func.lower(users.c.email).like(pattern),
                func.lower(users.c.username).like(pattern),
                func.lower(users.c.first_name).like(pattern),
                func.lower(users.c.last_name).like(pattern),
            )
            query = query.where(cond)
            count_query = count_query.where(cond)
        if is_active is not None:
            query = query.where(users.c.is_active == is_active)
            count_query = count_query.where(users.c.is_active == is_active)
        query = query.order_by(users.c.created_at.desc(), users.c.id.desc()).limit(limit).offset((page - 1) * limit)
        with self.engine.connect() as conn:
            total = conn.execute(count_query).scalar() or 0
            rows = conn.execute(query).fetchall()
            result = [self._hydrate(conn, r) for r in rows]
        return result, total

    def update_user(self, user_id: int, conn: Connection | None = None, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: email, username, hashed_password, first_name,
        last_name, is_active. Unknown fields raise ValueError -- fail fast.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        fields["updated_at"] = now_iso()
        with self._use(conn) as c:
            result = c.execute(users.update().where(users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.begin() as conn:
            conn.execute(users.update().where(users.c.id == user_id).values(last_login=now_iso()))

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        """Insert a role. Raises IntegrityError if the name is taken."""
        stamp = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                roles.insert().values(
                    name=role.name,
                    display_name=role.display_name,
                    description=role.description,
                    permissions=json.dumps(role.permissions or {}),
                    is_system=role.is_system,
                    is_active=role.is_active,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            return result.inserted_primary_key[0]

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(roles.select().order_by(roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def update_role(self, role_id: int, **fields) -> bool:
        """Update a role. `permissions` is passed as a dict and stored as JSON."""
        unknown = set(fields) - self._ROLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown role fields: {unknown!r}")
        if "permissions" in fields:
            fields["permissions"] = json.dumps(fields["permissions"] or {})
        fields["updated_at"] = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(roles.update().where(roles.c.id == role_id).values(**fields))
        return result.rowcount > 0

    def delete_role(self, role_id: int) -> bool:
        """Delete a role and its assignments. Callers must refuse system roles first."""
        with self.engine.begin() as conn:
            conn.execute(user_roles.delete().where(user_roles.c.role_id == role_id))
            result = conn.execute(roles.delete().where(roles.c.id == role_id))
        return result.rowcount > 0

    def assign_role(self, user_id: int, role_id: int) -> bool:
        """Assign a role to a user. Returns False if the assignment already existed."""
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(user_roles.c.id).where((user_roles.c.user_id == user_id) & (user_roles.c.role_id == role_id))
            ).fetchone()
            if existing is not None:
                return False
            conn.execute(user_roles.insert().values(user_id=user_id, role_id=role_id, assigned_at=now_iso()))
        return True

    def remove_role(self, user_id: int, role_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                user_roles.delete().where((user_roles.c.user_id == user_id) & (user_roles.c.role_id == role_id))
            )
        return result.rowcount > 0

    def get_user_roles(self, user_id: int) -> list[Role]:
        with self.engine.connect() as conn:
            return _load_roles(conn, user_id)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def insert_audit_entry(self, entry: AuditEntry) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                audit_logs.insert().values(
                    user_id=entry.user_id,
                    action=entry.action,
                    details=json.dumps(entry.details or {}),
                    created_at=now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def list_audit_entries(self, user_id: int) -> list[AuditEntry]:
        """Return audit entries for a user, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                audit_logs.select().where(audit_logs.c.user_id == user_id).order_by(audit_logs.c.id)
            ).fetchall()
        return [
            AuditEntry(
                id=r.id,
                user_id=r.user_id,
                action=r.action,
                details=json.loads(r.details) if r.details else {},
                created_at=r.created_at,
            )
            for r in rows
        ]

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _hydrate(self, conn: Connection, row) -> User | None:
        if row is None:
            return None
        user = _row_to_user(row)
        user.roles = _load_roles(conn, user.id)
        return user


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _load_roles(conn: Connection, user_id: int) -> list[Role]:
    rows = conn.execute(
        select(roles)
        .select_from(user_roles.join(roles, user_roles.c.role_id == roles.c.id))
        .where((user_roles.c.user_id == user_id) & (roles.c.is_active.is_(True)))
        .order_by(roles.c.name)
    ).fetchall()
    return [_row_to_role(r) for r in rows]


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        is_active=bool(row.is_active),
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        display_name=row.display_name,
        description=row.description,
        permissions=json.loads(row.permissions) if row.permissions else {},
        is_system=bool(row.is_system),
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
