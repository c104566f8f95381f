"""
tests/test_user_store.py -- Integration tests for LocalUserStore against in-memory SQLite.

Each test gets its own named shared-memory DB from the store fixture in
conftest.py, so nothing leaks between tests.
"""

from __future__ import annotations

import pytest

from directory.models import RemoteUser


def _alice(**overrides) -> RemoteUser:
    fields = dict(id=42, username="alice", firstname="Alice", lastname="Smith", email="alice@example.com")
    fields.update(overrides)
    return RemoteUser(**fields)


class TestUpsert:
    def test_insert_then_find(self, store) -> None:
        record = store.upsert(_alice(), "student")

        assert record.remote_user_id == 42
        assert record.username == "alice"
        assert record.email == "alice@example.com"
        assert record.role == "student"
        assert record.is_active is True
        assert record.last_login is None
        assert record.updated_at is not None
        assert store.find_by_remote_id(42) == record

    def test_upsert_is_idempotent_on_key(self, store) -> None:
        store.upsert(_alice(), "student")
        store.upsert(_alice(firstname="Alicia"), "admin")

        users = store.list_users()
        assert len(users) == 1
        assert users[0].remote_user_id == 42
        assert users[0].first_name == "Alicia"
        assert users[0].role == "admin"

    def test_missing_email_keeps_cached_value(self, store) -> None:
        store.upsert(_alice(), "student")
        store.upsert(_alice(email=None), "student")

        assert store.find_by_remote_id(42).email == "alice@example.com"

    def test_suspended_user_is_inactive(self, store) -> None:
        record = store.upsert(_alice(suspended=True), "student")
        assert record.is_active is False
        assert store.list_users() == []

    def test_upsert_keeps_last_login(self, store) -> None:
        store.upsert(_alice(), "student")
        store.touch_last_login(42)
        stamped = store.find_by_remote_id(42).last_login

        store.upsert(_alice(), "student")
        assert store.find_by_remote_id(42).last_login == stamped


class TestRoleWrites:
    def test_update_role(self, store) -> None:
        store.upsert(_alice(), "student")
        assert store.update_role(42, "teacher") is True
        assert store.find_by_remote_id(42).role == "teacher"

    def test_update_role_unknown_user(self, store) -> None:
        assert store.update_role(999, "teacher") is False

    def test_touch_last_login_unknown_user(self, store) -> None:
        assert store.touch_last_login(999) is False

    def test_role_history_newest_first(self, store) -> None:
        store.upsert(_alice(), "student")
        store.record_role_change(42, "student", "teacher")
        store.record_role_change(42, "teacher", "manager")

        history = store.role_history(42)
        assert [(c.old_role, c.new_role) for c in history] == [("teacher", "manager"), ("student", "teacher")]
        assert store.role_history(7) == []

    def test_transaction_rolls_back_together(self, store) -> None:
        store.upsert(_alice(), "student")

        with pytest.raises(RuntimeError):
            with store.transaction() as conn:
                store.update_role(42, "admin", conn=conn)
                store.record_role_change(42, "student", "admin", conn=conn)
                raise RuntimeError("boom")

        assert store.find_by_remote_id(42).role == "student"
        assert store.role_history(42) == []

    def test_transaction_commits_together(self, store) -> None:
        store.upsert(_alice(), "student")
        with store.transaction() as conn:
            store.update_role(42, "teacher", conn=conn)
            store.record_role_change(42, "student", "teacher", conn=conn)

        assert store.find_by_remote_id(42).role == "teacher"
        assert len(store.role_history(42)) == 1


class TestListUsers:
    @pytest.fixture
    def populated(self, store):
        store.upsert(_alice(), "student")
        store.upsert(RemoteUser(id=7, username="bob", firstname="Bob", lastname="Jones", email="bob@x"), "teacher")
        store.upsert(RemoteUser(id=9, username="carol", firstname="Carol", lastname="Smith"), "student")
        return store

    def test_ordered_by_username(self, populated) -> None:
        assert [u.username for u in populated.list_users()] == ["alice", "bob", "carol"]

    def test_filter_on_allowed_field(self, populated) -> None:
        assert [u.username for u in populated.list_users("last_name", "Smith")] == ["alice", "carol"]
        assert [u.username for u in populated.list_users("email", "bob@x")] == ["bob"]

    def test_unknown_field_is_ignored(self, populated) -> None:
        assert len(populated.list_users("role", "teacher")) == 3
        assert len(populated.list_users("1=1; DROP TABLE lms_users; --", "x")) == 3

    def test_field_without_value_is_unfiltered(self, populated) -> None:
        assert len(populated.list_users("username", None)) == 3

    def test_no_match(self, populated) -> None:
        assert populated.list_users("username", "nobody") == []


def test_find_unknown_returns_none(store) -> None:
    assert store.find_by_remote_id(12345) is None


def test_ping(store) -> None:
    assert store.ping() is True
