"""
auth/sessions.py -- Session ledger: durable record of issued refresh tokens.

Pattern: Repository over the `sessions` table declared in auth/store.py.
It shares the UserStore's engine so session writes can join a transaction
opened with UserStore.transaction().

Lifecycle of one row:
  create()  -- active; expiry = now + 7 days (30 with remember-me)
  rotate()  -- token value replaced in place; expiry unchanged
  revoke()  -- terminal; the row is kept until the next sweep()
  sweep()   -- deletes rows that are expired or revoked

rotate() is a compare-and-swap: it only succeeds while the row still holds
the token the caller presented and is not revoked. Two concurrent refresh
calls with the same token therefore cannot both win.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.engine import Connection

from auth.models import Session
from auth.store import UserStore, _load_roles, _row_to_user, now_iso, sessions, to_iso, users

logger = logging.getLogger("gatekeeper.sessions")

DEFAULT_SESSION_TTL = timedelta(days=7)
REMEMBER_ME_SESSION_TTL = timedelta(days=30)


class SessionLedger:
    """Repository for refresh-token sessions.

    Usage:
        ledger = SessionLedger(store)
        session = ledger.create(user_id, refresh_token, remember_me=False)
        found = ledger.find_by_token(refresh_token)   # Session with .user loaded
        ledger.revoke(found.id)
    """

    def __init__(
        self,
        store: UserStore,
        default_ttl: timedelta = DEFAULT_SESSION_TTL,
        remember_me_ttl: timedelta = REMEMBER_ME_SESSION_TTL,
    ) -> None:
        self._store = store
        self.default_ttl = default_ttl
        self.remember_me_ttl = remember_me_ttl

    @property
    def engine(self):
        return self._store.engine

    def create(
        self,
        user_id: int,
        refresh_token: str,
        remember_me: bool = False,
        conn: Connection | None = None,
    ) -> Session:
        """Insert an active session row and return it."""
        now = datetime.now(timezone.utc)
        expires_at = now + (self.remember_me_ttl if remember_me else self.default_ttl)
        stamp = to_iso(now)
        with self._store._use(conn) as c:
            result = c.execute(
                sessions.insert().values(
                    user_id=user_id,
                    refresh_token=refresh_token,
                    expires_at=to_iso(expires_at),
                    is_revoked=False,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            session_id = result.inserted_primary_key[0]
        return Session(
            id=session_id,
            user_id=user_id,
            refresh_token=refresh_token,
            expires_at=expires_at,
            created_at=stamp,
            updated_at=stamp,
        )

    def find_by_token(self, refresh_token: str) -> Session | None:
        """Look up a session by its refresh token value, with user and roles loaded.

        Returns revoked and expired rows too -- the caller decides what is
        usable so it can log the reason.
        """
        with self.engine.connect() as conn:
            row = conn.execute(sessions.select().where(sessions.c.refresh_token == refresh_token)).fetchone()
            if row is None:
                return None
            session = _row_to_session(row)
            user_row = conn.execute(users.select().where(users.c.id == session.user_id)).fetchone()
            if user_row is not None:
                session.user = _row_to_user(user_row)
                session.user.roles = _load_roles(conn, session.user.id)
        return session

    def get(self, session_id: int) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(sessions.select().where(sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def rotate(self, session_id: int, new_refresh_token: str, expected_token: str | None = None) -> bool:
        """Replace the stored refresh token in place. Expiry is not extended.

        When expected_token is given the update only applies if the row still
        holds that value and is not revoked. Returns False when nothing was
        updated (lost race, revoked, or unknown id).
        """
        query = sessions.update().where(sessions.c.id == session_id).where(sessions.c.is_revoked.is_(False))
        if expected_token is not None:
            query = query.where(sessions.c.refresh_token == expected_token)
        with self.engine.begin() as conn:
            result = conn.execute(query.values(refresh_token=new_refresh_token, updated_at=now_iso()))
        return result.rowcount > 0

    def revoke(self, session_id: int) -> bool:
        """Mark one session revoked. Returns False if the id is unknown."""
        with self.engine.begin() as conn:
            result = conn.execute(
                sessions.update().where(sessions.c.id == session_id).values(is_revoked=True, updated_at=now_iso())
            )
        return result.rowcount > 0

    def revoke_all(self, user_id: int, conn: Connection | None = None) -> int:
        """Revoke every non-revoked session of a user. Returns the number revoked."""
        with self._store._use(conn) as c:
            result = c.execute(
                sessions.update()
                .where((sessions.c.user_id == user_id) & (sessions.c.is_revoked.is_(False)))
                .values(is_revoked=True, updated_at=now_iso())
            )
        return result.rowcount

    def list_for_user(self, user_id: int) -> list[Session]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                sessions.select().where(sessions.c.user_id == user_id).order_by(sessions.c.id)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def count_active(self, user_id: int) -> int:
        """Number of sessions that are neither revoked nor expired."""
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count())
                .select_from(sessions)
                .where(
                    (sessions.c.user_id == user_id)
                    & (sessions.c.is_revoked.is_(False))
                    & (sessions.c.expires_at > now_iso())
                )
            ).scalar()
        return count or 0

    def sweep(self) -> int:
        """Delete every expired or revoked session. Returns the number deleted.

        Best-effort batch delete; safe to call at any time and from any
        process since it only removes rows no caller can use anymore.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                sessions.delete().where(or_(sessions.c.expires_at <= now_iso(), sessions.c.is_revoked.is_(True)))
            )
        deleted = result.rowcount
        logger.info("Session sweep removed %d row(s)", deleted)
        return deleted


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token=row.refresh_token,
        expires_at=datetime.fromisoformat(row.expires_at),
        is_revoked=bool(row.is_revoked),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
