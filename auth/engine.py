"""
auth/engine.py -- Authentication engine: login, refresh, logout, email verification.

The engine owns the token lifecycle. It is the only code that reads or writes
the authentication keys in the token cache, and the only code that mutates a
user's verification state.

Per-user states (derived, not stored):
  Unverified          -- is_verified=False. Login always rejects.
  Verified-LoggedOut  -- is_verified=True, no refresh:{id} cache entry.
  Verified-LoggedIn   -- refresh:{id} holds the one refresh token we honour.

Session policy: single active session per user. A new login overwrites
refresh:{id}, so the previous refresh token stops working at once. Concurrent
logins race and the last cache write wins.

Result policy:
  Expected refusals (bad credentials, stale refresh token, consumed link) are
  returned as Rejected values. Messages are generic: login never
  says whether the email exists or the account is unverified.
  InfrastructureError from the store, cache or codec is logged here with the
  operation name and re-raised. Nothing is retried.

Collaborators are passed in, never imported as module globals, so tests can
hand in MemoryTokenCache and an in-memory UserStore.

Layer rule: no imports from api/ or events/. cache/ helpers are used only for
key naming.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from typing import Protocol

from auth.errors import InfrastructureError, StoreError
from auth.models import LoginSuccess, Rejected, ResendOutcome, User
from auth.tokens import TokenCodec, equalize_timing, generate_verification_token, token_prefix, verify_password
from cache.store import refresh_key, verification_key
from core.config import Settings

logger = logging.getLogger("eventdesk.auth")

INVALID_CREDENTIALS = Rejected("invalid_credentials", "Invalid email or password.")
INVALID_REFRESH_TOKEN = Rejected("invalid_refresh_token", "Invalid or expired refresh token.")
INVALID_VERIFICATION_TOKEN = Rejected("invalid_verification_token", "Invalid or expired verification token.")
USER_NOT_FOUND = Rejected("user_not_found", "User not found.")


class CredentialStore(Protocol):
    def get_by_email(self, email: str) -> User | None: ...

    def get_by_id(self, user_id: str) -> User | None: ...

    def update_verification(self, user_id: str, *, is_verified: bool, verification_token: str | None) -> User: ...


class TokenCache(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...


class AuthEngine:
    """Orchestrates the credential store, token cache and token codec.

    Usage:
        engine = AuthEngine.from_settings(user_store, token_cache, get_settings())
        result = engine.login(email, password)
        if isinstance(result, Rejected): ...
    """

    def __init__(
        self,
        store: CredentialStore,
        cache: TokenCache,
        codec: TokenCodec,
        *,
        access_ttl: timedelta = timedelta(hours=24),
        refresh_ttl: timedelta = timedelta(days=30),
        verification_ttl: timedelta = timedelta(hours=24),
        revoke_superseded_verification: bool = True,
    ) -> None:
        self.store = store
        self.cache = cache
        self.codec = codec
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.verification_ttl = verification_ttl
        self.revoke_superseded_verification = revoke_superseded_verification

    @classmethod
    def from_settings(cls, store: CredentialStore, cache: TokenCache, settings: Settings) -> "AuthEngine":
        return cls(
            store,
            cache,
            TokenCodec.from_settings(settings),
            access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
            verification_ttl=timedelta(seconds=settings.verification_token_ttl_seconds),
            revoke_superseded_verification=settings.revoke_superseded_verification_tokens,
        )

    # ------------------------------------------------------------------
    # Login / refresh / logout
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> LoginSuccess | Rejected:
        """Check credentials and open a session.

        Unknown email, unverified account and wrong password all return the
        same INVALID_CREDENTIALS. bcrypt runs on every path so response time
        does not reveal which check failed.
        """
        with self._collaborators("login"):
            user = self.store.get_by_email(email)
            if user is None:
                equalize_timing(password)
                logger.warning("Login rejected: unknown email")
                return INVALID_CREDENTIALS
            if not user.is_verified:
                equalize_timing(password)
                logger.warning("Login rejected: unverified account %s", user.id)
                return INVALID_CREDENTIALS
            if not verify_password(password, user.hashed_password):
                logger.warning("Login rejected: bad password for %s", user.id)
                return INVALID_CREDENTIALS

            access_token = self._issue_access_token(user)
            refresh_token = self.codec.issue_refresh_token({"user_id": user.id, "email": user.email}, self.refresh_ttl)
            # Overwrites any previous session for this user.
            self.cache.set(refresh_key(user.id), refresh_token, self._seconds(self.refresh_ttl))

        logger.info("User logged in: %s (%s)", user.id, user.role.value)
        return LoginSuccess(user=user, access_token=access_token, refresh_token=refresh_token)

    def refresh_access_token(self, refresh_token: str) -> str | Rejected:
        """Exchange a live refresh token for a new access token.

        Succeeds only if the token verifies, equals the cached refresh:{sub}
        value exactly, and its user still exists and is verified. The refresh
        token itself is not rotated.
        """
        claims = self.codec.verify_refresh_token(refresh_token)
        if claims is None:
            logger.warning("Refresh rejected: token failed verification")
            return INVALID_REFRESH_TOKEN
        user_id = claims["sub"]

        with self._collaborators("refresh_access_token"):
            cached = self.cache.get(refresh_key(user_id))
            if cached is None or cached != refresh_token:
                # Logged out, superseded by a newer login, or evicted.
                logger.warning("Refresh rejected: no matching session for %s", user_id)
                return INVALID_REFRESH_TOKEN

            user = self.store.get_by_id(user_id)
            if user is None or not user.is_verified:
                logger.warning("Refresh rejected: user %s missing or unverified", user_id)
                return INVALID_REFRESH_TOKEN

            access_token = self._issue_access_token(user)

        logger.info("Access token refreshed for %s", user.id)
        return access_token

    def logout(self, user_id: str) -> None:
        """Drop the user's refresh session. Idempotent.

        The caller's identity must already be established from a valid access
        token; that check belongs to the HTTP dependency, not here.
        """
        with self._collaborators("logout"):
            self.cache.delete(refresh_key(user_id))
        logger.info("User logged out: %s", user_id)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def verify_email(self, token: str) -> User | Rejected:
        """Consume a verification token and mark its user verified.

        Single-use: the cache entry is deleted as soon as the user is updated,
        so presenting the same token again is rejected. Expired, consumed and
        never-issued tokens are indistinguishable to the caller.
        """
        if not token:
            return INVALID_VERIFICATION_TOKEN
        key = verification_key(token)

        with self._collaborators("verify_email"):
            user_id = self.cache.get(key)
            if user_id is None:
                logger.warning("Verification rejected: unknown token %s", token_prefix(token))
                return INVALID_VERIFICATION_TOKEN
            try:
                user = self.store.update_verification(user_id, is_verified=True, verification_token=None)
            except StoreError:
                logger.warning("Verification rejected: token %s points at missing user", token_prefix(token))
                self.cache.delete(key)
                return INVALID_VERIFICATION_TOKEN
            self.cache.delete(key)

        logger.info("Email verified for %s", user.id)
        return user

    def resend_verification(self, email: str) -> ResendOutcome | Rejected:
        """Issue a fresh verification token for an unverified user.

        This endpoint may reveal whether an email exists: it is not a login
        path, and admins use it with real addresses. An already-verified
        account is a success with no token, not an error.
        """
        with self._collaborators("resend_verification"):
            user = self.store.get_by_email(email)
            if user is None:
                logger.warning("Resend rejected: unknown email")
                return USER_NOT_FOUND
        if user.is_verified:
            logger.info("Resend skipped: %s already verified", user.id)
            return ResendOutcome(user=user, token=None, already_verified=True)
        return ResendOutcome(user=user, token=self.issue_verification_token(user))

    def issue_verification_token(self, user: User) -> str:
        """Generate, persist and cache a new verification token for user.

        When revoke_superseded_verification is on, the token currently
        recorded on the user is removed from the cache first, so only the
        newest link verifies. Otherwise the old link stays valid until its
        own TTL runs out.
        """
        if user.is_verified:
            raise ValueError(f"User {user.id} is already verified")
        token = generate_verification_token()

        with self._collaborators("issue_verification_token"):
            previous = user.verification_token
            if self.revoke_superseded_verification and previous:
                self.cache.delete(verification_key(previous))
            self.store.update_verification(user.id, is_verified=False, verification_token=token)
            self.cache.set(verification_key(token), user.id, self._seconds(self.verification_ttl))

        user.verification_token = token
        logger.info("Verification token %s issued for %s", token_prefix(token), user.id)
        return token

    def mark_verified(self, user: User) -> User:
        """Verify user without a link and revoke any outstanding verification token.

        Used when an account moves to a role that is verified at creation.
        """
        with self._collaborators("mark_verified"):
            if user.verification_token:
                self.cache.delete(verification_key(user.verification_token))
            updated = self.store.update_verification(user.id, is_verified=True, verification_token=None)
        logger.info("Account %s verified without a link", user.id)
        return updated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _issue_access_token(self, user: User) -> str:
        return self.codec.issue_access_token(
            {"user_id": user.id, "email": user.email, "role": user.role},
            self.access_ttl,
        )

    @staticmethod
    def _seconds(ttl: timedelta) -> int:
        return int(ttl.total_seconds())

    @staticmethod
    @contextmanager
    def _collaborators(operation: str) -> Iterator[None]:
        """Log infrastructure failures with the operation that hit them, then re-raise."""
        try:
            yield
        except InfrastructureError as exc:
            logger.error("auth.%s failed: %s unavailable (%s)", operation, exc.collaborator, exc.message)
            raise
