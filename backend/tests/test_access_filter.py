"""
Tests for AccessFilter and IdentityStore
"""
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from benefits_bpp.core.exceptions import (AuthorizationError, UpstreamError,
                                          ValidationError)
from benefits_bpp.services.access_filter import AccessFilter, CallerScope
from benefits_bpp.services.identity_store import IdentityStore
from conftest import make_benefit


@pytest.fixture
def access_filter(db, settings):
    """Create AccessFilter backed by the test database"""
    return AccessFilter(IdentityStore(db), settings)


@pytest.fixture
def catalog():
    """Benefits created by alice (A), bob (A), carol (B), admin and an unknown user"""
    return [
        make_benefit("by-alice", creator_id=501),
        make_benefit("by-bob", creator_id=502),
        make_benefit("by-carol", creator_id=601),
        make_benefit("by-admin", creator_id=900),
        make_benefit("by-stranger", creator_id=12345),
        make_benefit("no-creator", creator_id=None),
    ]


def _ids(benefits):
    return [b["documentId"] for b in benefits]


def test_resolve_caller(access_filter, users):
    """Roles and the super admin flag come from the identity store"""
    admin = access_filter.resolve_caller(users["admin"].id)
    alice = access_filter.resolve_caller(str(users["alice"].id))

    assert admin.is_super_admin is True
    assert alice.is_super_admin is False
    assert alice.roles == ("Provider A",)


def test_resolve_unknown_and_anonymous_callers(access_filter, users):
    """Unknown or missing callers have no roles"""
    assert access_filter.resolve_caller(None) == CallerScope(user_id=None)
    assert access_filter.resolve_caller(99999).roles == ()


def test_resolve_invalid_user_id(access_filter):
    """A non-numeric id is a client error"""
    with pytest.raises(ValidationError):
        access_filter.resolve_caller("not-a-number")


def test_super_admin_sees_everything(access_filter, users, catalog):
    """The privileged role is unrestricted"""
    caller = access_filter.resolve_caller(users["admin"].id)
    assert access_filter.creator_scope(caller) is None
    assert _ids(access_filter.filter_visible_benefits(caller, catalog)) == _ids(catalog)


def test_provider_sees_own_provider_only(access_filter, users, catalog):
    """Same-role creators are visible, other providers and admins are not"""
    caller = access_filter.resolve_caller(users["alice"].id)

    assert sorted(access_filter.creator_scope(caller)) == ["501", "502"]
    assert _ids(access_filter.filter_visible_benefits(caller, catalog)) == ["by-alice", "by-bob"]


def test_caller_without_roles_sees_nothing(access_filter, users, catalog):
    """Fail closed for callers without roles"""
    caller = access_filter.resolve_caller(users["dave"].id)
    assert access_filter.creator_scope(caller) == []
    assert access_filter.filter_visible_benefits(caller, catalog) == []


def test_empty_role_set_never_sees_anything(access_filter, catalog):
    """No identity lookups are needed to deny a role-less caller"""
    caller = CallerScope(user_id=1, roles=())
    assert access_filter.filter_visible_benefits(caller, catalog) == []
    assert not any(access_filter.can_access_benefit(caller, b) for b in catalog)


def test_can_access_benefit(access_filter, users, catalog):
    """Single-benefit checks match the list filter"""
    by_id = {b["documentId"]: b for b in catalog}
    carol = access_filter.resolve_caller(users["carol"].id)
    alice = access_filter.resolve_caller(users["alice"].id)

    assert access_filter.can_access_benefit(carol, by_id["by-carol"]) is True
    assert access_filter.can_access_benefit(carol, by_id["by-alice"]) is False
    assert access_filter.can_access_benefit(alice, by_id["by-bob"]) is True
    assert access_filter.can_access_benefit(alice, by_id["by-admin"]) is False
    assert access_filter.can_access_benefit(alice, by_id["by-stranger"]) is False
    assert access_filter.can_access_benefit(alice, by_id["no-creator"]) is False


def test_ensure_can_access_raises_forbidden(access_filter, users, catalog):
    """Denial is an AuthorizationError"""
    carol = access_filter.resolve_caller(users["carol"].id)
    with pytest.raises(AuthorizationError) as exc_info:
        access_filter.ensure_can_access(carol, catalog[0])
    assert exc_info.value.status_code == 403


def test_identity_store_failure_is_upstream_error(settings):
    """A broken identity store is not reported as a denial"""
    db = MagicMock()
    db.execute.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
    access_filter = AccessFilter(IdentityStore(db), settings)

    with pytest.raises(UpstreamError) as exc_info:
        access_filter.resolve_caller(1)
    assert exc_info.value.status_code == 502
    assert "database is locked" not in exc_info.value.safe_message()


def test_roles_are_loaded_with_the_user(session_factory, users):
    """Roles stay readable once the user has left its session"""
    session = session_factory()
    identity_store = IdentityStore(session)
    try:
        alice = identity_store.get_user(users["alice"].id)
        creator = identity_store.get_user_by_provider_id("601")
    finally:
        session.close()

    assert alice.role_names == ["Provider A"]
    assert creator.role_names == ["Provider B"]
