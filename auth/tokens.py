"""
auth/tokens.py -- Password hashing, JWT signing, and the token lifecycle.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper), work factor from
       Settings.bcrypt_rounds (12 in production). _DUMMY_HASH enables timing
       equalization in IdentityDirectory.authenticate() so response time does
       not reveal whether an email is registered [C1]. A stored digest that
       bcrypt cannot parse raises CorruptCredential; a mismatch never raises.

  JWT: python-jose with HS256. Two token classes, two secrets [M8]:
       access  -- JWT_SECRET, 15 minutes, never individually revocable.
       refresh -- JWT_REFRESH_SECRET, 7 days, revocable via the blacklist.
       Both carry sub (user id), email, role, optional team_id, a "type"
       claim naming the class, and a random jti so two tokens minted in the
       same second are still distinct strings.

  Token pair states: ISSUED -> ACTIVE -> REFRESHED | REVOKED | EXPIRED.
       refresh() does NOT revoke the refresh token it was given. Several
       clients (browser tabs) may refresh with the same token concurrently
       without locking each other out; only logout() revokes.

  Revocation store failures are fail-open [R1]:
       refresh() treats a store error as "not revoked", logout() reports
       success even if the revoke write failed. Revocation is hardening on
       top of signature + expiry, not the only trust boundary. This is an
       accepted availability trade-off and is logged at WARNING every time it
       applies -- it is never swallowed silently.

  Revocation keys are SHA-256 digests of the raw token string, prefixed with
       "blacklist:". The check runs before signature verification and no
       usable bearer credential is ever written to the store.

Layer rule: no imports from api/, teams/, or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Protocol

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import get_settings
from core.errors import (
    CorruptCredential,
    ExpiredToken,
    InvalidToken,
    RevocationStoreError,
    RevokedToken,
    UserNotFound,
    ValidationError,
)

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("teamauth.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS_TOKEN_TYPE = "access"  # noqa: S105 -- claim value, not a password
REFRESH_TOKEN_TYPE = "refresh"  # noqa: S105

_REVOCATION_PREFIX = "blacklist:"

# bcrypt input limit.
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt digest of the given secret.

    bcrypt accepts at most 72 bytes (not characters). Longer secrets raise
    ValidationError; the API schemas reject them before they get here.
    """
    secret = plain.encode("utf-8")
    if len(secret) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(secret, salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the secret matches the digest.

    bcrypt.checkpw compares in constant time. Returns False on mismatch;
    raises CorruptCredential only when the stored digest is malformed.
    A secret over 72 bytes can never have been hashed, so it is a mismatch;
    the bcrypt round still runs on its prefix to keep timing uniform.
    """
    secret = plain.encode("utf-8")
    too_long = len(secret) > MAX_PASSWORD_BYTES
    try:
        matches = bcrypt.checkpw(secret[:MAX_PASSWORD_BYTES], hashed.encode("utf-8"))
    except ValueError as exc:
        raise CorruptCredential() from exc
    return matches and not too_long


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones [C1].
_DUMMY_HASH: str = hash_password("teamauth_timing_dummy")


def equalize_timing(plain: str) -> None:
    """Burn one bcrypt verification so a failed lookup costs the same as a real check."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Claims signer
# ---------------------------------------------------------------------------


def sign_claims(claims: dict, secret: str, ttl_seconds: int, now: datetime) -> str:
    """Encode claims as an HS256 JWT valid for ttl_seconds from now."""
    payload = dict(claims)
    payload["iat"] = int(now.timestamp())
    payload["exp"] = int((now + timedelta(seconds=ttl_seconds)).timestamp())
    payload["jti"] = uuid.uuid4().hex
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def verify_claims(token: str, secret: str) -> dict:
    """Verify signature and expiry and return the claims.

    Raises ExpiredToken past exp, InvalidToken for anything else.
    """
    try:
        return jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise ExpiredToken() from exc
    except JWTError as exc:
        raise InvalidToken() from exc


def revocation_key(token: str) -> str:
    return _REVOCATION_PREFIX + hashlib.sha256(token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Token lifecycle
# ---------------------------------------------------------------------------


class RevocationStore(Protocol):
    """Expiring key set. Implemented by cache.store and cache.redis_store."""

    def revoke(self, key: str, ttl_seconds: int) -> None: ...

    def is_revoked(self, key: str) -> bool: ...

    def unrevoke(self, key: str) -> None: ...


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"  # noqa: S105


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues, verifies, refreshes and revokes session tokens.

    Usage:
        tokens = TokenService(user_store, RevocationCache())
        pair = tokens.issue(user)
        claims = tokens.verify_access(pair.access_token)
        new_pair = tokens.refresh(pair.refresh_token)
        tokens.logout(pair.refresh_token, user.id)

    clock is injectable so tests can mint tokens that are already expired;
    expiry checks inside jose always use the real wall clock.
    """

    def __init__(
        self,
        store: UserStore,
        revocations: RevocationStore,
        *,
        access_secret: str | None = None,
        refresh_secret: str | None = None,
        access_ttl_seconds: int | None = None,
        refresh_ttl_seconds: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.revocations = revocations
        self._access_secret = access_secret or _settings.jwt_secret
        self._refresh_secret = refresh_secret or _settings.jwt_refresh_secret
        self.access_ttl_seconds = access_ttl_seconds or _settings.access_token_expire_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds or _settings.refresh_token_expire_seconds
        self._clock = clock or _utcnow

    def issue(self, user: User, team_id: str | None = None) -> TokenPair:
        """Mint a fresh access/refresh pair for user.

        team_id defaults to the user's earliest team membership (their
        personal team for any account created through signup or OAuth).
        """
        if team_id is None:
            teams = self.store.get_user_teams(user.id)
            team_id = teams[0].id if teams else None
        claims = {"sub": user.id, "email": user.email, "role": user.role.value}
        if team_id:
            claims["team_id"] = team_id
        now = self._clock()
        access = sign_claims({**claims, "type": ACCESS_TOKEN_TYPE}, self._access_secret, self.access_ttl_seconds, now)
        refresh = sign_claims(
            {**claims, "type": REFRESH_TOKEN_TYPE}, self._refresh_secret, self.refresh_ttl_seconds, now
        )
        return TokenPair(access_token=access, refresh_token=refresh, expires_in=self.access_ttl_seconds)

    def verify_access(self, token: str) -> dict:
        """Signature and expiry check only; access tokens are not looked up in the blacklist."""
        return self._verify(token, self._access_secret, ACCESS_TOKEN_TYPE)

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a valid, unrevoked refresh token for a new pair.

        Order: blacklist check, then signature/expiry, then subject lookup.
        The presented refresh token stays valid afterwards.
        """
        if self._is_revoked(refresh_token):
            logger.info("Refresh rejected: token is revoked")
            raise RevokedToken()
        claims = self._verify(refresh_token, self._refresh_secret, REFRESH_TOKEN_TYPE)
        user = self.store.get_by_id(claims["sub"])
        if user is None:
            logger.info("Refresh rejected: subject %s no longer exists", claims["sub"])
            raise UserNotFound()
        if not user.is_active:
            logger.info("Refresh rejected: user %s is inactive", user.id)
            raise InvalidToken()
        return self.issue(user, team_id=claims.get("team_id"))

    def logout(self, refresh_token: str, user_id: str | None = None) -> None:
        """Blacklist refresh_token for the rest of its lifetime.

        Always returns normally. A revocation store outage is logged and
        otherwise ignored [R1]. When user_id is given, a token whose subject
        is someone else is left alone so one account cannot blacklist
        another account's session.
        """
        if user_id is not None:
            subject = self._unverified_claim(refresh_token, "sub")
            if subject is not None and subject != user_id:
                logger.warning("Logout by user %s presented a refresh token for user %s; not revoked", user_id, subject)
                return
        ttl = self.remaining_lifetime(refresh_token)
        try:
            self.revocations.revoke(revocation_key(refresh_token), ttl)
        except RevocationStoreError:
            logger.warning(
                "Revocation store unavailable during logout for user %s; "
                "fail-open policy: token remains usable until natural expiry",
                user_id,
                exc_info=True,
            )
            return
        logger.info("Refresh token revoked for user %s (ttl=%ds)", user_id, ttl)

    def unrevoke(self, refresh_token: str) -> None:
        """Administrative undo of logout(). Store errors propagate."""
        self.revocations.unrevoke(revocation_key(refresh_token))

    def remaining_lifetime(self, token: str) -> int:
        """Seconds until token's exp claim, or the full refresh TTL if unreadable.

        Read without verifying so even a token signed with a rotated secret
        gets blacklisted for long enough.
        """
        exp = self._unverified_claim(token, "exp")
        try:
            exp = int(exp)
        except (TypeError, ValueError):
            return self.refresh_ttl_seconds
        return max(1, exp - int(_utcnow().timestamp()))

    @staticmethod
    def _unverified_claim(token: str, name: str):
        try:
            return jwt.get_unverified_claims(token).get(name)
        except (JWTError, AttributeError):
            return None

    def _is_revoked(self, token: str) -> bool:
        try:
            return self.revocations.is_revoked(revocation_key(token))
        except RevocationStoreError:
            logger.warning(
                "Revocation store unavailable during refresh; fail-open policy: treating token as not revoked",
                exc_info=True,
            )
            return False

    @staticmethod
    def _verify(token: str, secret: str, expected_type: str) -> dict:
        try:
            claims = verify_claims(token, secret)
        except InvalidToken as exc:
            logger.info("%s token rejected: %s", expected_type, type(exc).__name__)
            raise
        if claims.get("type") != expected_type or not claims.get("sub"):
            logger.info("%s token rejected: wrong type or missing subject", expected_type)
            raise InvalidToken()
        return claims
