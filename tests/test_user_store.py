"""Unit tests for auth/store.py -- UserStore repository methods."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import StoreError, StoreUnavailableError
from auth.models import Role, User


def test_create_and_lookup(user_store, make_user):
    user = make_user("lead@eventdesk.test", name="Lena")
    by_email = user_store.get_by_email("lead@eventdesk.test")
    by_id = user_store.get_by_id(user.id)
    assert by_email == by_id
    assert by_email.name == "Lena"
    assert by_email.role is Role.DOMAIN_LEAD
    assert by_email.is_verified is True
    assert by_email.created_at


def test_unknown_lookups_return_none(user_store):
    assert user_store.get_by_email("ghost@eventdesk.test") is None
    assert user_store.get_by_id("0" * 32) is None


def test_duplicate_email_is_integrity_error(make_user):
    make_user("dup@eventdesk.test")
    with pytest.raises(IntegrityError):
        make_user("dup@eventdesk.test")


def test_update_verification_returns_committed_row(user_store, make_user):
    user = make_user("ca@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    pending = user_store.update_verification(user.id, is_verified=False, verification_token="t" * 64)
    assert pending.verification_token == "t" * 64

    done = user_store.update_verification(user.id, is_verified=True, verification_token=None)
    assert done.is_verified is True
    assert done.verification_token is None
    assert user_store.get_by_id(user.id).is_verified is True


def test_update_verification_unknown_id_raises_store_error(user_store):
    with pytest.raises(StoreError):
        user_store.update_verification("missing", is_verified=True, verification_token=None)


def test_upsert_keeps_credentials_and_verification(user_store, make_user):
    original = make_user("cc@eventdesk.test", role=Role.CHECKIN_CREW, name="Old Name")
    replacement = User(
        email="cc@eventdesk.test",
        name="New Name",
        role=Role.CHECKIN_CREW,
        hashed_password="ignored",
        campus="North",
        is_verified=False,
    )
    user_id, created = user_store.upsert_user(replacement)
    assert (user_id, created) == (original.id, False)

    stored = user_store.get_by_id(original.id)
    assert stored.name == "New Name"
    assert stored.campus == "North"
    assert stored.hashed_password == original.hashed_password
    assert stored.is_verified is True
    assert stored.uid == original.uid


def test_upsert_writes_supplied_uid(user_store, make_user):
    original = make_user("cc@eventdesk.test", role=Role.CHECKIN_CREW)
    moved = User(
        email="cc@eventdesk.test",
        name="Test User",
        role=Role.DOMAIN_LEAD,
        hashed_password="ignored",
        uid="DL_0000BEEF",
    )
    user_store.upsert_user(moved)
    stored = user_store.get_by_id(original.id)
    assert (stored.role, stored.uid) == (Role.DOMAIN_LEAD, "DL_0000BEEF")


def test_list_users_filters_by_role(user_store, make_user):
    make_user("b@eventdesk.test", role=Role.CAMPUS_AMBASSADOR, verified=False)
    make_user("a@eventdesk.test", role=Role.SUPER_ADMIN)
    assert [u.email for u in user_store.list_users()] == ["a@eventdesk.test", "b@eventdesk.test"]
    assert [u.email for u in user_store.list_users(role=Role.CAMPUS_AMBASSADOR)] == ["b@eventdesk.test"]


def test_has_users_and_delete_all(user_store, make_user):
    assert user_store.has_users() is False
    make_user("x@eventdesk.test")
    assert user_store.has_users() is True
    assert user_store.delete_all() == 1
    assert user_store.has_users() is False


@pytest.mark.parametrize(
    "call",
    [
        lambda s: s.get_by_email("a@eventdesk.test"),
        lambda s: s.get_by_id("abc"),
        lambda s: s.update_verification("abc", is_verified=True, verification_token=None),
    ],
)
def test_database_failure_is_store_unavailable(user_store, call):
    broken = MagicMock()
    broken.connect.side_effect = OperationalError("SELECT 1", {}, Exception("disk I/O error"))
    broken.begin.side_effect = OperationalError("BEGIN", {}, Exception("disk I/O error"))
    user_store.engine = broken
    with pytest.raises(StoreUnavailableError):
        call(user_store)
