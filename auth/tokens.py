"""
auth/tokens.py -- JWT codec, password hashing, and verification-token utilities.

Security design decisions:
  JWT: python-jose with HS256. Two disjoint token classes, each signed with
       its own secret:
         access  -- {sub, email, role}, short-lived (24h), verified on every
                    request, never stored server-side.
         refresh -- {sub, email}, long-lived (30d), only honoured while the
                    matching cache entry exists (see auth/engine.py).
       A `typ` claim is also embedded so a token presented to the wrong
       verifier fails even if an operator misconfigures identical secrets.
       Verification returns None on any failure -- the caller turns that
       into a rejection.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in the login path so response time does not reveal
       whether an email exists.

  Verification tokens: secrets.token_hex(32) gives 256 bits of entropy.
       They are opaque random strings, not JWTs -- their validity lives
       entirely in the cache.

Layer rule: no imports from api/, events/, or cache/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.errors import TokenSigningError
from core.config import Settings

logger = logging.getLogger("eventdesk.auth")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are silently truncated by bcrypt. The API
    layer caps password length well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash (e.g. a seed row written with a plaintext value).
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("eventdesk_timing_dummy")


def equalize_timing(plain: str) -> None:
    """Burn one bcrypt comparison. Call on every early-exit login path."""
    verify_password(plain, _DUMMY_HASH)


def generate_verification_token() -> str:
    """Return a fresh 64-hex-char (256-bit) email verification token."""
    return secrets.token_hex(32)


def token_prefix(token: str) -> str:
    """Loggable prefix of a token. Full token values never reach the logs."""
    return f"{token[:8]}..."


# ---------------------------------------------------------------------------
# JWT codec
# ---------------------------------------------------------------------------


class TokenCodec:
    """Signs and verifies access and refresh tokens with separate secrets.

    Stateless: output depends only on the claims, the secret and the clock.

    Usage:
        codec = TokenCodec(access_secret, refresh_secret)
        token = codec.issue_access_token({"user_id": u.id, "email": u.email, "role": u.role}, timedelta(hours=24))
        claims = codec.verify_access_token(token)   # dict or None
    """

    def __init__(self, access_secret: str, refresh_secret: str) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh tokens must use different secrets")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(settings.jwt_secret, settings.jwt_refresh_secret)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, claims: dict, ttl: timedelta) -> str:
        """Sign {user_id, email, role} plus iat/exp with the access secret."""
        role = claims["role"]
        payload = {
            "sub": str(claims["user_id"]),
            "email": claims["email"],
            "role": getattr(role, "value", role),
        }
        return self._encode(payload, ACCESS, ttl, self._access_secret)

    def issue_refresh_token(self, claims: dict, ttl: timedelta) -> str:
        """Sign {user_id, email} plus iat/exp with the refresh secret."""
        payload = {
            "sub": str(claims["user_id"]),
            "email": claims["email"],
        }
        return self._encode(payload, REFRESH, ttl, self._refresh_secret)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str) -> dict | None:
        """Return access claims, or None on bad signature, bad shape, or expiry."""
        return self._decode(token, ACCESS, self._access_secret, required=("sub", "email", "role"))

    def verify_refresh_token(self, token: str) -> dict | None:
        """Return refresh claims, or None on bad signature, bad shape, or expiry."""
        return self._decode(token, REFRESH, self._refresh_secret, required=("sub", "email"))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _encode(payload: dict, token_type: str, ttl: timedelta, secret: str) -> str:
        issued_at = datetime.now(timezone.utc)
        payload = {
            **payload,
            "typ": token_type,
            "iat": issued_at,
            "exp": issued_at + ttl,
            # Two tokens minted for the same user in the same second must still differ.
            "jti": secrets.token_hex(8),
        }
        try:
            return jwt.encode(payload, secret, algorithm=_ALGORITHM)
        except JWTError as exc:
            raise TokenSigningError(str(exc), operation=f"issue_{token_type}_token") from exc

    @staticmethod
    def _decode(token: str, token_type: str, secret: str, required: tuple[str, ...]) -> dict | None:
        if not isinstance(token, str) or not token:
            return None
        try:
            payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if payload.get("typ") != token_type:
            return None
        if any(not payload.get(name) for name in required):
            return None
        return payload
