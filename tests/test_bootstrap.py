"""Unit tests for auth/bootstrap.py -- the super_admin bootstrap."""

from __future__ import annotations

import pytest

from auth.bootstrap import init_superuser
from auth.errors import DuplicateRecord
from auth.models import Role, User
from auth.passwords import authenticate
from tests.conftest import ADMIN_EMAIL, ADMIN_PASSWORD


def test_creates_super_admin(store) -> None:
    assert init_superuser(store, ADMIN_EMAIL, ADMIN_PASSWORD) is True
    user = authenticate(store, ADMIN_EMAIL, ADMIN_PASSWORD)
    assert user is not None
    assert user.role == Role.SUPER_ADMIN.value
    assert user.is_local


def test_second_run_is_a_no_op(store) -> None:
    init_superuser(store, ADMIN_EMAIL, ADMIN_PASSWORD)
    assert init_superuser(store, "other@x.test", "Other1234") is False
    assert store.get_by_email("other@x.test") is None


def test_existing_super_admin_password_is_not_overwritten(store) -> None:
    init_superuser(store, ADMIN_EMAIL, ADMIN_PASSWORD)
    init_superuser(store, ADMIN_EMAIL, "SomethingElse1")
    assert authenticate(store, ADMIN_EMAIL, ADMIN_PASSWORD) is not None


@pytest.mark.parametrize("email,password", [("", ADMIN_PASSWORD), (ADMIN_EMAIL, ""), ("", "")])
def test_missing_configuration_skips(store, email, password) -> None:
    assert init_superuser(store, email, password) is False
    assert not store.has_role(Role.SUPER_ADMIN)


def test_store_refuses_a_second_super_admin(store) -> None:
    init_superuser(store, ADMIN_EMAIL, ADMIN_PASSWORD)
    with pytest.raises(DuplicateRecord):
        store.create_user(User(email="second@x.test", role=Role.SUPER_ADMIN.value))


def test_lost_race_returns_false(store, monkeypatch) -> None:
    """Another process bootstrapped between our check and our insert."""
    init_superuser(store, ADMIN_EMAIL, ADMIN_PASSWORD)
    monkeypatch.setattr(store, "has_role", lambda role: False)
    assert init_superuser(store, "late@x.test", "Late12345") is False
    assert store.get_by_email("late@x.test") is None
