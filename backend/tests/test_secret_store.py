"""Tests for the secret store."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from onetime.errors import StoreUnavailable
from onetime.models.secret import Secret, SecretMetadata, SecretState
from onetime.services.secret_store import SecretStore
from tests.test_utils import utcnow


def make_secret(key="abc", max_views=2, expires_in=3600):
    now = utcnow()
    return Secret(
        key=key,
        encrypted_content="ciphertext",
        has_passphrase=False,
        max_views=max_views,
        current_views=0,
        expires_at=now + timedelta(seconds=expires_in),
        created_at=now,
    )


@pytest.fixture
def store(db_session):
    return SecretStore(db_session)


def insert(store, secret):
    store.insert_secret(secret)
    store.insert_metadata(SecretMetadata(secret_id=secret.id, secret_key=secret.key))
    store.commit()


class TestIncrementViews:
    def test_counts_up_to_max_then_refuses(self, store):
        insert(store, make_secret(max_views=2))
        now = utcnow()

        first = store.increment_views("abc", now, "10.0.0.1")
        second = store.increment_views("abc", now, "10.0.0.2")
        third = store.increment_views("abc", now, "10.0.0.3")
        store.commit()

        assert (first.current_views, first.max_views) == (1, 2)
        assert (second.current_views, second.max_views) == (2, 2)
        assert third is None

        row = store.get_secret_by_key("abc")
        assert row.current_views == 2
        assert row.viewed_ip == "10.0.0.2"

    def test_refuses_expired_row(self, store):
        insert(store, make_secret(expires_in=60))

        assert store.increment_views("abc", utcnow() + timedelta(seconds=61), None) is None

    def test_refuses_missing_row(self, store):
        assert store.increment_views("missing", utcnow(), None) is None


class TestUpdates:
    def test_update_secret_rejects_view_count(self, store):
        insert(store, make_secret())

        with pytest.raises(ValueError):
            store.update_secret("abc", current_views=5)

    def test_update_secret_fields(self, store):
        insert(store, make_secret())

        assert store.update_secret("abc", recipient_email="a@b.co") == 1
        store.commit()

        assert store.get_secret_by_key("abc").recipient_email == "a@b.co"

    def test_delete_secret_keeps_metadata(self, store):
        insert(store, make_secret())

        assert store.delete_secret("abc") == 1
        assert store.update_metadata("abc", SecretState.DESTROYED) == 1
        store.commit()

        assert store.get_secret_by_key("abc") is None
        assert store.get_metadata("abc").state == SecretState.DESTROYED

    def test_metadata_moves_forward_only(self, store):
        insert(store, make_secret())

        assert store.update_metadata("abc", SecretState.VIEWED) == 1
        assert store.update_metadata("abc", SecretState.VIEWED) == 0
        assert store.update_metadata("abc", SecretState.NEW) == 0
        assert store.update_metadata("abc", SecretState.DESTROYED) == 1
        assert store.update_metadata("abc", SecretState.VIEWED) == 0
        store.commit()

        assert store.get_metadata("abc").state == SecretState.DESTROYED


class TestStoreUnavailable:
    @pytest.mark.parametrize(
        "error",
        [
            OperationalError("UPDATE secrets", {}, Exception("database is locked")),
            PoolTimeoutError("QueuePool limit reached"),
        ],
    )
    def test_driver_errors_become_store_unavailable(self, error):
        session = MagicMock()
        session.execute.side_effect = error
        session.scalars.side_effect = error
        store = SecretStore(session)

        with pytest.raises(StoreUnavailable):
            store.increment_views("abc", utcnow(), None)
        with pytest.raises(StoreUnavailable):
            store.get_secret_by_key("abc")

        assert session.rollback.call_count == 2

    def test_commit_failure_becomes_store_unavailable(self):
        session = MagicMock()
        session.commit.side_effect = OperationalError("COMMIT", {}, Exception("timeout"))

        with pytest.raises(StoreUnavailable):
            SecretStore(session).commit()

    def test_error_carries_generic_message(self):
        session = MagicMock()
        session.scalars.side_effect = OperationalError(
            "SELECT", {}, Exception("password authentication failed for user admin")
        )

        with pytest.raises(StoreUnavailable) as exc_info:
            SecretStore(session).get_secret_by_key("abc")

        assert "admin" not in exc_info.value.message
