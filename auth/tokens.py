"""
auth/tokens.py -- Token issuer and password hashing.

Security design decisions:
  Access tokens: python-jose with HS256. Signed with the configured
       SECRET_KEY and carry sub (user id), email, roles, iat and exp. Lifetime
       defaults to 15 minutes. Never stored server-side; validity is the
       signature plus the exp claim.

  Refresh tokens: secrets.token_hex(64) -- 512 bits of entropy, opaque, not a
       JWT. Their validity lives in the sessions table (auth/sessions.py).

  Passwords: bcrypt directly (no passlib wrapper) with a fixed cost factor,
       12 by default. The _DUMMY_HASH constant enables timing equalization in
       AuthService.login() so response time does not reveal whether an email
       is registered.

Decoding distinguishes an expired token (ErrorKind.TOKEN_EXPIRED) from a
malformed or tampered one (ErrorKind.UNAUTHORIZED). Clients use the
difference to decide between refreshing and re-authenticating.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenPair, User
from core.errors import AuthMessages, token_expired, unauthorized, validation_error

logger = logging.getLogger("gatekeeper.auth")

ALGORITHM = "HS256"
REFRESH_TOKEN_BYTES = 64
PASSWORD_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt reads at most 72 bytes and rejects longer input; such passwords
    raise ApiError(VALIDATION).
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > PASSWORD_MAX_BYTES:
        raise validation_error(
            AuthMessages.PASSWORD_TOO_LONG,
            details=[{"field": "password", "message": AuthMessages.PASSWORD_TOO_LONG}],
        )
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB: treat as a mismatch rather than a 500.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("gatekeeper_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt comparison against a dummy hash and discard the result.

    Called when the email is unknown so that path costs the same as a wrong
    password.
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Token issuer
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return an opaque refresh token: 64 random bytes as 128 hex characters."""
    return secrets.token_hex(REFRESH_TOKEN_BYTES)


class TokenIssuer:
    """Mints and verifies access tokens; mints refresh tokens.

    Holds its signing key and lifetime explicitly -- there is no module-level
    configuration. Build one per process from Settings:

        issuer = TokenIssuer(settings.secret_key, settings.access_token_expire_seconds)
        pair = issuer.issue(user)
        claims = issuer.decode(pair.access_token)
    """

    def __init__(self, secret_key: str, access_token_ttl_seconds: int = 15 * 60) -> None:
        if not secret_key:
            raise ValueError("TokenIssuer requires a non-empty secret key.")
        self._secret_key = secret_key
        self.access_token_ttl_seconds = access_token_ttl_seconds

    def create_access_token(
        self,
        user_id: int,
        email: str,
        roles: list[str],
        expire_seconds: int | None = None,
    ) -> str:
        """Encode a signed JWT with the user's identity and role names.

        Args:
            user_id:        Database id; stored as the string `sub` claim.
            email:          Stored as the `email` claim.
            roles:          Role names at issue time.
            expire_seconds: Override the configured lifetime. Negative values
                            produce an already-expired token (tests use this).
        """
        duration = self.access_token_ttl_seconds if expire_seconds is None else expire_seconds
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "email": email,
            "roles": list(roles),
            "type": "access",
            "iat": now,
            "exp": now + timedelta(seconds=duration),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def issue(self, user: User) -> TokenPair:
        """Mint an access token and a fresh refresh token for a user. No side effects."""
        return TokenPair(
            access_token=self.create_access_token(user.id, user.email, user.role_names),
            refresh_token=generate_refresh_token(),
            expires_in=self.access_token_ttl_seconds,
        )

    def decode(self, token: str) -> dict[str, Any]:
        """Verify a JWT and return its claims.

        Raises:
            ApiError(TOKEN_EXPIRED): signature valid but exp has passed.
            ApiError(UNAUTHORIZED):  anything else wrong with the token.
        """
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise token_expired() from None
        except JWTError:
            raise unauthorized(AuthMessages.INVALID_TOKEN) from None
        if claims.get("type") != "access" or not claims.get("sub"):
            raise unauthorized(AuthMessages.INVALID_TOKEN)
        try:
            claims["user_id"] = int(claims["sub"])
        except (TypeError, ValueError):
            raise unauthorized(AuthMessages.INVALID_TOKEN) from None
        return claims
