"""
tests/test_revocation_store.py -- Tests for the refresh-token blacklist backends.

Covers:
  - RevocationCache (SQLite): revoke / is_revoked / unrevoke, TTL expiry
    driven by a patched clock, purge_expired, errors after close()
  - RedisRevocationStore: SET EX / EXISTS / DEL against a mocked client,
    TTL clamping, RedisError -> RevocationStoreError
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from redis import RedisError

import cache.store as cache_store
from cache.redis_store import RedisRevocationStore
from cache.store import RevocationCache
from core.errors import RevocationStoreError


class _FakeTime:
    def __init__(self, now: float) -> None:
        self.now = now

    def time(self) -> float:
        return self.now


@pytest.fixture
def clock(monkeypatch) -> _FakeTime:
    fake = _FakeTime(1_700_000_000.0)
    monkeypatch.setattr(cache_store, "time", fake)
    return fake


class TestRevocationCache:
    def test_unknown_key_is_not_revoked(self, revocations: RevocationCache) -> None:
        assert revocations.is_revoked("blacklist:nope") is False

    def test_revoke_then_lookup(self, revocations: RevocationCache) -> None:
        revocations.revoke("blacklist:a", 60)
        assert revocations.is_revoked("blacklist:a") is True
        assert revocations.is_revoked("blacklist:b") is False

    def test_unrevoke(self, revocations: RevocationCache) -> None:
        revocations.revoke("blacklist:a", 60)
        revocations.unrevoke("blacklist:a")
        assert revocations.is_revoked("blacklist:a") is False

    def test_unrevoke_missing_key_is_noop(self, revocations: RevocationCache) -> None:
        revocations.unrevoke("blacklist:missing")

    def test_entry_expires(self, revocations: RevocationCache, clock: _FakeTime) -> None:
        revocations.revoke("blacklist:a", 30)
        clock.now += 29
        assert revocations.is_revoked("blacklist:a") is True
        clock.now += 2
        assert revocations.is_revoked("blacklist:a") is False

    def test_revoke_again_extends_ttl(self, revocations: RevocationCache, clock: _FakeTime) -> None:
        revocations.revoke("blacklist:a", 10)
        revocations.revoke("blacklist:a", 100)
        clock.now += 50
        assert revocations.is_revoked("blacklist:a") is True

    def test_nonpositive_ttl_clamped(self, revocations: RevocationCache, clock: _FakeTime) -> None:
        revocations.revoke("blacklist:a", 0)
        assert revocations.is_revoked("blacklist:a") is True

    def test_purge_expired(self, revocations: RevocationCache, clock: _FakeTime) -> None:
        revocations.revoke("blacklist:short", 10)
        revocations.revoke("blacklist:long", 1000)
        clock.now += 100
        assert revocations.purge_expired() == 1
        assert revocations.is_revoked("blacklist:long") is True

    def test_ping(self, revocations: RevocationCache) -> None:
        assert revocations.ping() is True

    def test_closed_connection_raises_store_error(self) -> None:
        cache = RevocationCache(":memory:")
        cache.close()
        with pytest.raises(RevocationStoreError):
            cache.is_revoked("blacklist:a")
        with pytest.raises(RevocationStoreError):
            cache.revoke("blacklist:a", 60)


class TestRedisRevocationStore:
    def test_revoke_sets_key_with_expiry(self) -> None:
        client = MagicMock()
        RedisRevocationStore(client).revoke("blacklist:a", 120)
        client.set.assert_called_once_with("blacklist:a", "1", ex=120)

    def test_ttl_clamped_to_one_second(self) -> None:
        client = MagicMock()
        RedisRevocationStore(client).revoke("blacklist:a", 0)
        client.set.assert_called_once_with("blacklist:a", "1", ex=1)

    def test_is_revoked_uses_exists(self) -> None:
        client = MagicMock()
        client.exists.return_value = 1
        store = RedisRevocationStore(client)
        assert store.is_revoked("blacklist:a") is True
        client.exists.return_value = 0
        assert store.is_revoked("blacklist:a") is False

    def test_unrevoke_deletes(self) -> None:
        client = MagicMock()
        RedisRevocationStore(client).unrevoke("blacklist:a")
        client.delete.assert_called_once_with("blacklist:a")

    def test_purge_is_noop(self) -> None:
        client = MagicMock()
        assert RedisRevocationStore(client).purge_expired() == 0
        client.delete.assert_not_called()

    @pytest.mark.parametrize("method, args", [("revoke", ("k", 5)), ("is_revoked", ("k",)), ("unrevoke", ("k",))])
    def test_redis_errors_wrapped(self, method: str, args: tuple) -> None:
        client = MagicMock()
        client.set.side_effect = RedisError("down")
        client.exists.side_effect = RedisError("down")
        client.delete.side_effect = RedisError("down")
        with pytest.raises(RevocationStoreError):
            getattr(RedisRevocationStore(client), method)(*args)

    def test_ping_error_wrapped(self) -> None:
        client = MagicMock()
        client.ping.side_effect = RedisError("down")
        with pytest.raises(RevocationStoreError):
            RedisRevocationStore(client).ping()
