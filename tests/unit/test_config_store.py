"""
Unit tests for account configuration stores.
"""

import json
import pytest
import redis

from mailwatch.models import PollingSettings
from mailwatch.storage.config_store import InMemoryConfigStore
from mailwatch.storage.redis_store import RedisConfigStore
from tests.mocks.factories import make_account
from tests.mocks.redis_mock import FakeRedis


class TestInMemoryConfigStore:
    """Test cases for InMemoryConfigStore."""

    def test_save_and_get(self):
        store = InMemoryConfigStore()
        account = make_account()

        store.save(account)

        assert store.get(account.account_id) == account
        assert store.list_accounts() == [account]

    def test_save_replaces_same_id(self):
        store = InMemoryConfigStore([make_account(interval_ms=1000)])
        store.save(make_account(interval_ms=5000))

        accounts = store.list_accounts()
        assert len(accounts) == 1
        assert accounts[0].settings.interval_ms == 5000

    def test_delete(self):
        store = InMemoryConfigStore([make_account()])
        assert store.delete("user@example.com") is True
        assert store.delete("user@example.com") is False
        assert store.get("user@example.com") is None


class TestRedisConfigStore:
    """Test cases for RedisConfigStore."""

    @pytest.fixture
    def client(self):
        return FakeRedis()

    @pytest.fixture
    def store(self, client):
        return RedisConfigStore(key_prefix="test", client=client)

    def test_save_writes_document_and_index(self, store, client):
        account = make_account(interval_ms=15_000)

        store.save(account)

        doc = json.loads(client.strings["test:account:user@example.com"])
        assert doc["id"] == "user@example.com"
        assert doc["interval_ms"] == 15_000
        assert client.sets["test:accounts"] == {"user@example.com"}

    def test_round_trip(self, store):
        account = make_account(seen_set_capacity=42)
        store.save(account)
        assert store.get(account.account_id) == account

    def test_list_accounts_sorted(self, store):
        for name in ("carol@example.com", "alice@example.com", "bob@example.com"):
            store.save(make_account(name))

        assert [a.account_id for a in store.list_accounts()] == [
            "alice@example.com",
            "bob@example.com",
            "carol@example.com",
        ]

    def test_missing_settings_use_defaults(self, client):
        store = RedisConfigStore(client=client, defaults=PollingSettings(interval_ms=60_000))
        client.set("mailwatch:account:a", json.dumps({
            "id": "a", "host": "imap.example.com", "port": 993,
            "username": "a", "credential_ref": "env:A",
        }))
        client.sadd("mailwatch:accounts", "a")

        account = store.get("a")

        assert account.settings.interval_ms == 60_000
        assert account.settings.seen_set_capacity == 1000

    def test_malformed_document_skipped(self, store, client):
        store.save(make_account("good@example.com"))
        client.set("test:account:bad", "{not json")
        client.sadd("test:accounts", "bad")

        assert [a.account_id for a in store.list_accounts()] == ["good@example.com"]

    def test_invalid_document_skipped(self, store, client):
        store.save(make_account("good@example.com"))
        client.set("test:account:bad@example.com", json.dumps({
            "id": "bad@example.com", "host": "", "port": 993,
            "username": "bad@example.com", "credential_ref": "env:BAD",
        }))
        client.sadd("test:accounts", "bad@example.com")

        assert store.get("bad@example.com") is None
        assert [a.account_id for a in store.list_accounts()] == ["good@example.com"]

    def test_delete(self, store, client):
        store.save(make_account())

        assert store.delete("user@example.com") is True
        assert store.get("user@example.com") is None
        assert client.sets["test:accounts"] == set()
        assert store.delete("user@example.com") is False

    def test_read_errors_degrade(self, store, client):
        store.save(make_account())
        client.fail_reads = True

        assert store.get("user@example.com") is None
        assert store.list_accounts() == []

    def test_write_errors_raise(self, store, client):
        client.fail_writes = True

        with pytest.raises(redis.RedisError):
            store.save(make_account())
        assert store.delete("user@example.com") is False
