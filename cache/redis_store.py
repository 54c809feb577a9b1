"""
cache/redis_store.py -- Redis-backed expiring key set for revoked refresh tokens.

Used when REDIS_URL is configured. Redis expires keys itself, so revoke()
is a single SET with EX and there is nothing to purge.

Same interface as cache.store.RevocationCache; every redis.RedisError is
re-raised as RevocationStoreError.
"""

from __future__ import annotations

import logging

from redis import Redis, RedisError

from core.errors import RevocationStoreError

logger = logging.getLogger("teamauth.cache.redis")


class RedisRevocationStore:
    """Thin Redis wrapper for the refresh-token blacklist."""

    def __init__(self, client: Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str, *, socket_timeout: float = 5.0) -> "RedisRevocationStore":
        client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    def revoke(self, key: str, ttl_seconds: int) -> None:
        # Redis rejects EX values below 1.
        try:
            self.client.set(key, "1", ex=max(1, int(ttl_seconds)))
        except RedisError as exc:
            raise RevocationStoreError(f"revoke failed: {exc}") from exc

    def is_revoked(self, key: str) -> bool:
        try:
            return bool(self.client.exists(key))
        except RedisError as exc:
            raise RevocationStoreError(f"lookup failed: {exc}") from exc

    def unrevoke(self, key: str) -> None:
        try:
            self.client.delete(key)
        except RedisError as exc:
            raise RevocationStoreError(f"unrevoke failed: {exc}") from exc

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError as exc:
            raise RevocationStoreError(f"ping failed: {exc}") from exc

    def purge_expired(self) -> int:
        return 0

    def close(self) -> None:
        self.client.close()
