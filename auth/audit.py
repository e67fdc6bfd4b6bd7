"""
auth/audit.py -- Fire-and-forget audit trail.

Contract: AuditTrail.record() NEVER raises. A failed audit write is logged at
WARNING and dropped; the operation that triggered it still succeeds. Every
other store call in the auth flow propagates its errors.

The non-propagating behavior lives in the @best_effort decorator, so any
method wearing it is visibly outside the normal error path.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar

from auth.models import AuditEntry
from auth.store import UserStore

logger = logging.getLogger("gatekeeper.audit")

F = TypeVar("F", bound=Callable[..., Any])


def best_effort(fn: F) -> F:
    """Run fn; on any exception log it and return None instead of raising."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except Exception:
            logger.warning("Best-effort call %s failed; continuing", fn.__qualname__, exc_info=True)
            return None

    return wrapper  # type: ignore[return-value]


class AuditTrail:
    """Writes auth events (register, login, logout, password_change) to audit_logs."""

    def __init__(self, store: UserStore) -> None:
        self._store = store

    @best_effort
    def record(self, user_id: int | None, action: str, details: dict[str, Any] | None = None) -> int | None:
        """Persist one audit entry. Returns its id, or None if the write failed."""
        return self._store.insert_audit_entry(AuditEntry(user_id=user_id, action=action, details=details or {}))
