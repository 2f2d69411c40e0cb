"""Tests for auth/engine.py -- login, refresh, logout and email verification.

Covers:
- Single active session: a new login supersedes the previous refresh token
- Generic rejections for unknown email, unverified account, wrong password
- Refresh requires an exact cache match and a still-verified user
- Verification tokens are single-use and expire with the cache entry
- Superseded verification tokens are revoked (or not, when configured off)
- Infrastructure failures propagate instead of becoming rejections
"""

from datetime import timedelta

import pytest

from auth.engine import (
    INVALID_CREDENTIALS,
    INVALID_REFRESH_TOKEN,
    INVALID_VERIFICATION_TOKEN,
    USER_NOT_FOUND,
    AuthEngine,
)
from auth.errors import CacheUnavailableError, StoreUnavailableError
from auth.models import LoginSuccess, Rejected, Role
from cache.store import refresh_key, verification_key
from core.config import Settings


class FailingCache:
    """Token cache whose every call fails like an unreachable Redis."""

    def get(self, key):
        raise CacheUnavailableError("connection refused", operation="get")

    def set(self, key, value, ttl_seconds):
        raise CacheUnavailableError("connection refused", operation="set")

    def delete(self, key):
        raise CacheUnavailableError("connection refused", operation="delete")


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def test_login_success_stores_refresh_session(engine, make_user, token_cache, password):
    user = make_user("lead@eventdesk.test")
    result = engine.login("lead@eventdesk.test", password)

    assert isinstance(result, LoginSuccess)
    assert result.user.id == user.id
    assert token_cache.get(refresh_key(user.id)) == result.refresh_token
    claims = engine.codec.verify_access_token(result.access_token)
    assert claims["sub"] == user.id
    assert claims["role"] == "DOMAIN_LEAD"


@pytest.mark.parametrize(
    "email,pw_override,verified",
    [
        ("ghost@eventdesk.test", None, True),  # unknown email
        ("lead@eventdesk.test", "wrong-password", True),  # bad password
        ("lead@eventdesk.test", None, False),  # unverified
    ],
)
def test_login_rejections_are_indistinguishable(engine, make_user, password, email, pw_override, verified):
    make_user("lead@eventdesk.test", verified=verified)
    result = engine.login(email, pw_override or password)
    assert result == INVALID_CREDENTIALS


def test_unverified_login_leaves_cache_untouched(engine, make_user, token_cache, password):
    user = make_user("ca@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    engine.login("ca@eventdesk.test", password)
    assert token_cache.get(refresh_key(user.id)) is None


def test_second_login_supersedes_first_session(engine, make_user, password):
    make_user("u2@eventdesk.test")
    first = engine.login("u2@eventdesk.test", password)
    second = engine.login("u2@eventdesk.test", password)

    assert engine.refresh_access_token(first.refresh_token) == INVALID_REFRESH_TOKEN
    assert isinstance(engine.refresh_access_token(second.refresh_token), str)


# ---------------------------------------------------------------------------
# Refresh / logout
# ---------------------------------------------------------------------------


def test_refresh_mints_valid_access_token(engine, make_user, password):
    user = make_user("lead@eventdesk.test")
    session = engine.login("lead@eventdesk.test", password)
    access = engine.refresh_access_token(session.refresh_token)
    assert engine.codec.verify_access_token(access)["sub"] == user.id


def test_refresh_rejects_access_token(engine, make_user, password):
    make_user("lead@eventdesk.test")
    session = engine.login("lead@eventdesk.test", password)
    assert engine.refresh_access_token(session.access_token) == INVALID_REFRESH_TOKEN


def test_refresh_rejects_after_session_expiry(engine, make_user, clock, password):
    make_user("lead@eventdesk.test")
    session = engine.login("lead@eventdesk.test", password)
    clock.advance(engine.refresh_ttl.total_seconds())
    assert engine.refresh_access_token(session.refresh_token) == INVALID_REFRESH_TOKEN


def test_refresh_rejects_user_no_longer_verified(engine, make_user, user_store, password):
    user = make_user("lead@eventdesk.test")
    session = engine.login("lead@eventdesk.test", password)
    user_store.update_verification(user.id, is_verified=False, verification_token=None)
    assert engine.refresh_access_token(session.refresh_token) == INVALID_REFRESH_TOKEN


def test_refresh_rejects_deleted_user(engine, make_user, user_store, password):
    make_user("lead@eventdesk.test")
    session = engine.login("lead@eventdesk.test", password)
    user_store.delete_all()
    assert engine.refresh_access_token(session.refresh_token) == INVALID_REFRESH_TOKEN


def test_logout_kills_refresh_and_is_idempotent(engine, make_user, token_cache, password):
    user = make_user("lead@eventdesk.test")
    session = engine.login("lead@eventdesk.test", password)

    engine.logout(user.id)
    engine.logout(user.id)

    assert token_cache.get(refresh_key(user.id)) is None
    assert engine.refresh_access_token(session.refresh_token) == INVALID_REFRESH_TOKEN


def test_logout_leaves_access_token_valid(engine, make_user, password):
    user = make_user("lead@eventdesk.test")
    session = engine.login("lead@eventdesk.test", password)
    engine.logout(user.id)
    assert engine.codec.verify_access_token(session.access_token)["sub"] == user.id


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


def test_verification_flow_unlocks_login(engine, make_user, token_cache, user_store, password):
    user = make_user("ca@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    token = engine.issue_verification_token(user)

    assert token_cache.get(verification_key(token)) == user.id
    assert user_store.get_by_id(user.id).verification_token == token

    verified = engine.verify_email(token)
    assert verified.is_verified is True
    assert verified.verification_token is None
    assert isinstance(engine.login("ca@eventdesk.test", password), LoginSuccess)


def test_verification_token_is_single_use(engine, make_user, token_cache):
    user = make_user("ca@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    token = engine.issue_verification_token(user)

    assert not isinstance(engine.verify_email(token), Rejected)
    assert token_cache.get(verification_key(token)) is None
    assert engine.verify_email(token) == INVALID_VERIFICATION_TOKEN


def test_verification_token_expires(engine, make_user, clock, user_store):
    user = make_user("ca@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    token = engine.issue_verification_token(user)
    clock.advance(engine.verification_ttl.total_seconds() + 1)

    assert engine.verify_email(token) == INVALID_VERIFICATION_TOKEN
    assert user_store.get_by_id(user.id).is_verified is False


@pytest.mark.parametrize("token", ["", "f" * 64])
def test_unknown_verification_token_rejected(engine, token):
    assert engine.verify_email(token) == INVALID_VERIFICATION_TOKEN


def test_verification_for_deleted_user_rejected_and_cleared(engine, make_user, token_cache, user_store):
    user = make_user("ca@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    token = engine.issue_verification_token(user)
    user_store.delete_all()

    assert engine.verify_email(token) == INVALID_VERIFICATION_TOKEN
    assert token_cache.get(verification_key(token)) is None


def test_issue_for_verified_user_refused(engine, make_user):
    user = make_user("lead@eventdesk.test")
    with pytest.raises(ValueError):
        engine.issue_verification_token(user)


def test_resend_revokes_superseded_token(engine, make_user):
    user = make_user("ca@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    old = engine.issue_verification_token(user)

    outcome = engine.resend_verification("ca@eventdesk.test")
    assert outcome.token and outcome.token != old
    assert engine.verify_email(old) == INVALID_VERIFICATION_TOKEN
    assert not isinstance(engine.verify_email(outcome.token), Rejected)


def test_resend_without_revocation_keeps_old_token(user_store, token_cache, codec, make_user):
    engine = AuthEngine(user_store, token_cache, codec, revoke_superseded_verification=False)
    user = make_user("ca@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    old = engine.issue_verification_token(user)
    engine.resend_verification("ca@eventdesk.test")

    assert not isinstance(engine.verify_email(old), Rejected)


def test_resend_for_unknown_email(engine):
    assert engine.resend_verification("ghost@eventdesk.test") == USER_NOT_FOUND


def test_resend_for_verified_user_issues_nothing(engine, make_user, user_store):
    user = make_user("lead@eventdesk.test")
    before = user_store.get_by_id(user.id)
    outcome = engine.resend_verification("lead@eventdesk.test")
    assert outcome.already_verified is True
    assert outcome.token is None
    after = user_store.get_by_id(user.id)
    assert (after.is_verified, after.verification_token) == (before.is_verified, before.verification_token)


def test_mark_verified_revokes_outstanding_link(engine, make_user, token_cache, password):
    user = make_user("ca@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    token = engine.issue_verification_token(user)

    updated = engine.mark_verified(user)
    assert (updated.is_verified, updated.verification_token) == (True, None)
    assert token_cache.get(verification_key(token)) is None
    assert engine.verify_email(token) == INVALID_VERIFICATION_TOKEN
    assert isinstance(engine.login("ca@eventdesk.test", password), LoginSuccess)


def test_ambassador_lifecycle(engine, make_user, password):
    """Unverified login fails, the link verifies once, then login works."""
    user = make_user("u1@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    assert engine.login("u1@eventdesk.test", password) == INVALID_CREDENTIALS

    t1 = engine.issue_verification_token(user)
    assert engine.verify_email(t1).is_verified is True

    session = engine.login("u1@eventdesk.test", password)
    assert session.access_token and session.refresh_token
    assert engine.verify_email(t1) == INVALID_VERIFICATION_TOKEN


def test_resend_after_expiry_issues_working_token(engine, make_user, clock):
    user = make_user("u1@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    t1 = engine.issue_verification_token(user)
    clock.advance(engine.verification_ttl.total_seconds())

    t2 = engine.resend_verification("u1@eventdesk.test").token
    assert t2 != t1
    assert engine.verify_email(t1) == INVALID_VERIFICATION_TOKEN
    assert engine.verify_email(t2).is_verified is True


# ---------------------------------------------------------------------------
# Infrastructure failures
# ---------------------------------------------------------------------------


def test_cache_outage_on_login_propagates(user_store, codec, make_user, password):
    make_user("lead@eventdesk.test")
    engine = AuthEngine(user_store, FailingCache(), codec)
    with pytest.raises(CacheUnavailableError):
        engine.login("lead@eventdesk.test", password)


def test_cache_outage_on_refresh_is_not_a_rejection(user_store, codec, make_user, engine, password):
    make_user("lead@eventdesk.test")
    session = engine.login("lead@eventdesk.test", password)
    broken = AuthEngine(user_store, FailingCache(), codec)
    with pytest.raises(CacheUnavailableError):
        broken.refresh_access_token(session.refresh_token)


def test_cache_outage_on_verify_and_logout(user_store, codec):
    engine = AuthEngine(user_store, FailingCache(), codec)
    with pytest.raises(CacheUnavailableError):
        engine.verify_email("a" * 64)
    with pytest.raises(CacheUnavailableError):
        engine.logout("someone")


def test_store_outage_on_login_propagates(token_cache, codec):
    class DownStore:
        def get_by_email(self, email):
            raise StoreUnavailableError("database is locked", operation="get_by_email")

    engine = AuthEngine(DownStore(), token_cache, codec)
    with pytest.raises(StoreUnavailableError):
        engine.login("lead@eventdesk.test", "whatever")


def test_from_settings_uses_configured_ttls(user_store, token_cache):
    settings = Settings(
        jwt_secret="a" * 40,
        jwt_refresh_secret="b" * 40,
        access_token_ttl_seconds=60,
        refresh_token_ttl_seconds=120,
        verification_token_ttl_seconds=180,
        revoke_superseded_verification_tokens=False,
    )
    engine = AuthEngine.from_settings(user_store, token_cache, settings)
    assert engine.access_ttl == timedelta(seconds=60)
    assert engine.refresh_ttl == timedelta(seconds=120)
    assert engine.verification_ttl == timedelta(seconds=180)
    assert engine.revoke_superseded_verification is False
