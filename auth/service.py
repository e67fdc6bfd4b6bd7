"""
auth/service.py -- Authentication service: register, login, refresh, logout,
change password, verify access token.

Pattern: Service object with explicit dependencies. AuthService is built once
per process (see AuthService.from_settings) and stored on app.state; nothing
here reads configuration or globals. Tests build their own instance against an
in-memory store.

Error policy:
  Every failure is an ApiError raised where it is detected. The service never
  catches its own errors, with two deliberate exceptions:
    - IntegrityError on user insert becomes CONFLICT (lost race on a unique
      email/username).
    - Audit writes go through AuditTrail.record(), which never raises.

Login does not distinguish an unknown email from a wrong password (same
message, same bcrypt cost), but does report a deactivated account distinctly.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.audit import AuditTrail
from auth.models import AuthResult, User
from auth.sessions import SessionLedger
from auth.store import UserStore
from auth.tokens import TokenIssuer, burn_password_check, hash_password, verify_password
from core.config import Settings
from core.errors import ApiError, AuthMessages, conflict, not_found, unauthorized

logger = logging.getLogger("gatekeeper.auth")


class AuthService:
    """Orchestrates the credential store, session ledger and token issuer."""

    def __init__(
        self,
        store: UserStore,
        sessions: SessionLedger,
        issuer: TokenIssuer,
        audit: AuditTrail | None = None,
        bcrypt_rounds: int = 12,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.issuer = issuer
        self.audit = audit or AuditTrail(store)
        self.bcrypt_rounds = bcrypt_rounds

    @classmethod
    def from_settings(cls, settings: Settings, store: UserStore | None = None) -> "AuthService":
        """Wire a service from Settings. Opens a UserStore on settings.database_url if none is given."""
        store = store or UserStore(settings.database_url)
        ledger = SessionLedger(
            store,
            default_ttl=timedelta(days=settings.session_expire_days),
            remember_me_ttl=timedelta(days=settings.remember_me_expire_days),
        )
        issuer = TokenIssuer(settings.secret_key, settings.access_token_expire_seconds)
        return cls(store, ledger, issuer, bcrypt_rounds=settings.bcrypt_rounds)

    def hash_password(self, plain: str) -> str:
        return hash_password(plain, rounds=self.bcrypt_rounds)

    def _conflict_for(self, email: str, username: str | None) -> ApiError | None:
        existing = self.store.find_conflicting(email, username)
        if existing is None:
            return None
        if existing.email.lower() == email:
            return conflict(AuthMessages.EMAIL_ALREADY_EXISTS)
        return conflict(AuthMessages.USERNAME_ALREADY_EXISTS)

    def _check_available(self, email: str, username: str | None) -> None:
        error = self._conflict_for(email, username)
        if error is not None:
            raise error

    def _lost_insert_race(self, email: str, username: str | None) -> ApiError:
        # A concurrent writer took the email or username after _check_available.
        return self._conflict_for(email, username) or conflict(AuthMessages.EMAIL_OR_USERNAME_EXISTS)

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        username: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> AuthResult:
        """Create an identity, open its first session and return it with tokens.

        Raises ApiError(CONFLICT) if the email or username is already taken.
        """
        email = email.strip().lower()
        logger.info("Registration attempt")

        self._check_available(email, username)

        user = User(
            email=email,
            username=username,
            hashed_password=self.hash_password(password),
            first_name=first_name,
            last_name=last_name,
        )
        try:
            with self.store.transaction() as conn:
                user.id = self.store.create_user(user, conn=conn)
                tokens = self.issuer.issue(user)
                self.sessions.create(user.id, tokens.refresh_token, conn=conn)
        except IntegrityError as exc:
            raise self._lost_insert_race(email, username) from exc

        self.audit.record(user.id, "register")
        logger.info("User registered: %s", user.id)
        return AuthResult(user=self.store.get_by_id(user.id) or user, tokens=tokens)

    def provision_user(
        self,
        email: str,
        password: str,
        username: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        role_names: tuple[str, ...] | list[str] = (),
    ) -> User:
        """Create a user without opening a session. Used by the CLI and seeding.

        Raises ApiError(CONFLICT) on a taken email or username and
        ApiError(NOT_FOUND) for an unknown role name.
        """
        email = email.strip().lower()
        self._check_available(email, username)
        wanted = []
        for name in role_names:
            role = self.store.get_role_by_name(name)
            if role is None:
                raise not_found(f"Role not found: {name}")
            wanted.append(role)

        user = User(
            email=email,
            username=username,
            hashed_password=self.hash_password(password),
            first_name=first_name,
            last_name=last_name,
        )
        try:
            user.id = self.store.create_user(user)
        except IntegrityError as exc:
            raise self._lost_insert_race(email, username) from exc
        for role in wanted:
            self.store.assign_role(user.id, role.id)
        logger.info("User provisioned: %s", user.id)
        return self.store.get_by_id(user.id) or user

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, remember_me: bool = False) -> AuthResult:
        """Verify credentials, stamp last_login, open a session and return tokens.

        Timing equalization: bcrypt always runs, against a dummy hash when the
        email is unknown, so response time does not reveal registration.
        """
        logger.info("Login attempt")
        user = self.store.get_by_email(email.strip())
        if user is None:
            burn_password_check(password)
            raise unauthorized(AuthMessages.INVALID_CREDENTIALS)
        if not verify_password(password, user.hashed_password):
            raise unauthorized(AuthMessages.INVALID_CREDENTIALS)
        if not user.is_active:
            raise unauthorized(AuthMessages.USER_INACTIVE)

        self.store.update_last_login(user.id)
        tokens = self.issuer.issue(user)
        self.sessions.create(user.id, tokens.refresh_token, remember_me=remember_me)
        self.audit.record(user.id, "login", {"remember_me": remember_me})

        logger.info("User logged in: %s", user.id)
        return AuthResult(user=self.store.get_by_id(user.id) or user, tokens=tokens)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh_token(self, refresh_token: str) -> AuthResult:
        """Exchange a refresh token for a new pair, rotating the session in place.

        The presented token stops working immediately. Rotation is
        compare-and-swap, so of two concurrent calls with the same token only
        one succeeds.
        """
        logger.info("Token refresh attempt")
        session = self.sessions.find_by_token(refresh_token)
        if session is None or not session.is_usable(datetime.now(timezone.utc)):
            raise unauthorized(AuthMessages.INVALID_TOKEN)
        user = session.user
        if user is None or not user.is_active:
            raise unauthorized(AuthMessages.USER_INACTIVE)

        tokens = self.issuer.issue(user)
        if not self.sessions.rotate(session.id, tokens.refresh_token, expected_token=refresh_token):
            logger.warning("Refresh token for session %s was rotated concurrently", session.id)
            raise unauthorized(AuthMessages.INVALID_TOKEN)

        logger.info("Token refreshed for user: %s", user.id)
        return AuthResult(user=user, tokens=tokens)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, refresh_token: str) -> None:
        """Revoke the session holding this refresh token.

        Unknown tokens are a silent no-op: logout is idempotent.
        """
        logger.info("Logout attempt")
        session = self.sessions.find_by_token(refresh_token)
        if session is None:
            return
        self.sessions.revoke(session.id)
        self.audit.record(session.user_id, "logout")
        logger.info("User logged out: %s", session.user_id)

    # ------------------------------------------------------------------
    # Change password
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """Replace the password hash and revoke every session, atomically.

        Both writes share one transaction: either the new hash is stored and
        all sessions are revoked, or neither happens.
        """
        logger.info("Password change attempt for user: %s", user_id)
        user = self.store.get_by_id(user_id)
        if user is None:
            raise not_found(AuthMessages.USER_NOT_FOUND)
        if not verify_password(current_password, user.hashed_password):
            raise unauthorized(AuthMessages.CURRENT_PASSWORD_INCORRECT)

        new_hash = self.hash_password(new_password)
        with self.store.transaction() as conn:
            self.store.update_user(user_id, conn=conn, hashed_password=new_hash)
            revoked = self.sessions.revoke_all(user_id, conn=conn)

        self.audit.record(user_id, "password_change", {"sessions_revoked": revoked})
        logger.info("Password changed for user: %s (%d session(s) revoked)", user_id, revoked)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_token(self, access_token: str) -> User:
        """Verify an access token and return the current user with roles.

        Raises:
            ApiError(TOKEN_EXPIRED): exp has passed.
            ApiError(UNAUTHORIZED):  bad signature/structure, or the user no
                                     longer exists or is deactivated.
        """
        claims = self.issuer.decode(access_token)
        user = self.store.get_by_id(claims["user_id"])
        if user is None or not user.is_active:
            raise unauthorized(AuthMessages.USER_NOT_FOUND)
        return user

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep_sessions(self) -> int:
        """Delete expired and revoked sessions. Returns the number removed."""
        return self.sessions.sweep()

    def close(self) -> None:
        self.store.close()
