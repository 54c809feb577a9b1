"""
cache/store.py -- SQLite-backed expiring key set for revoked refresh tokens.

Default revocation backend when no REDIS_URL is configured. Each row is a
revoked-token key with an absolute expiry; a key past its expiry reads as
not revoked and is dropped lazily or by purge_expired().

Every method wraps sqlite3 failures in RevocationStoreError so TokenService
can apply its fail-open policy without knowing which backend is in use.

Usage:
    cache = RevocationCache()
    cache.revoke("blacklist:ab12...", ttl_seconds=604800)
    cache.is_revoked("blacklist:ab12...")   # True until the TTL elapses
    cache.unrevoke("blacklist:ab12...")     # administrative undo
    cache.purge_expired()                   # call periodically to trim old entries
"""

import logging
import sqlite3
import time
from pathlib import Path

from core.errors import RevocationStoreError

logger = logging.getLogger("teamauth.cache")

_DEFAULT_DB = Path(__file__).parent / "teamauth_revocations.db"

_DDL = """
CREATE TABLE IF NOT EXISTS revoked_tokens (
    token_key   TEXT PRIMARY KEY,
    expires_at  REAL NOT NULL
);
"""


class RevocationCache:
    def __init__(self, db_path=_DEFAULT_DB) -> None:
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def revoke(self, key: str, ttl_seconds: int) -> None:
        """Mark key revoked for ttl_seconds, replacing any existing entry."""
        expires_at = time.time() + max(1, int(ttl_seconds))
        try:
            self._conn.execute(
                "INSERT OR REPLACE INTO revoked_tokens (token_key, expires_at) VALUES (?, ?)",
                (key, expires_at),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise RevocationStoreError(f"revoke failed: {exc}") from exc

    def is_revoked(self, key: str) -> bool:
        """Return True if key was revoked and its TTL has not elapsed."""
        try:
            row = self._conn.execute(
                "SELECT expires_at FROM revoked_tokens WHERE token_key = ?",
                (key,),
            ).fetchone()
            if row is None:
                return False
            if row[0] <= time.time():
                self._delete(key)
                return False
            return True
        except sqlite3.Error as exc:
            raise RevocationStoreError(f"lookup failed: {exc}") from exc

    def unrevoke(self, key: str) -> None:
        try:
            self._delete(key)
        except sqlite3.Error as exc:
            raise RevocationStoreError(f"unrevoke failed: {exc}") from exc

    def ping(self) -> bool:
        try:
            return self._conn.execute("SELECT 1").fetchone()[0] == 1
        except sqlite3.Error as exc:
            raise RevocationStoreError(f"ping failed: {exc}") from exc

    def purge_expired(self) -> int:
        """Delete all entries past their expiry. Returns number of rows removed."""
        try:
            cursor = self._conn.execute("DELETE FROM revoked_tokens WHERE expires_at <= ?", (time.time(),))
            self._conn.commit()
        except sqlite3.Error as exc:
            raise RevocationStoreError(f"purge failed: {exc}") from exc
        if cursor.rowcount:
            logger.info("Purged %d expired revocation entries", cursor.rowcount)
        return cursor.rowcount

    def _delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM revoked_tokens WHERE token_key = ?", (key,))
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
