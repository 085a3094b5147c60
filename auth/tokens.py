"""
auth/tokens.py -- Password hashing and JWT issue/verify.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry id, username, full_name and role
       plus iat/exp. TokenService.verify() raises InvalidTokenError on any
       failure -- the gate turns that into a 401 without saying why.

       Claims are a point-in-time snapshot. verify() does NOT re-read the
       user row, so a role change or deactivation takes effect only when the
       token expires (24h by default).

  Signing key: TokenService is constructed once by the app factory with the
       Settings instance. There is no module-level key.

  Passwords: bcrypt directly (no passlib wrapper), 10 rounds by default. The
       _DUMMY_HASH constant enables timing equalization in authenticate_user()
       so response time does not reveal whether a username exists.

Layer rule: no imports from api/ or audit/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Optional

import bcrypt
from jose import JWTError, jwt

from core.config import Settings
from core.errors import HashingError, InvalidTokenError
from core.models import Claims, User

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("netinv.auth")

_ALGORITHM = "HS256"
_DEFAULT_ROUNDS = 10

# bcrypt only reads the first 72 bytes. Truncating explicitly keeps newer
# bcrypt releases (which raise on longer input) from failing valid passwords.
_BCRYPT_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _password_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = _DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt digest of plain.

    The salt is generated per call and embedded in the returned string, so two
    hashes of the same password differ. Raises HashingError only if the bcrypt
    library itself fails.
    """
    if not plain:
        raise ValueError("password must be a non-empty string")
    try:
        return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")
    except (ValueError, TypeError) as exc:
        logger.exception("bcrypt hashing failed")
        raise HashingError("password hashing failed") from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if plain matches the bcrypt digest.

    Malformed digests (created outside this system, truncated, empty) count as
    a failed verification rather than an error.
    """
    if not plain or not hashed:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except Exception:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("netinv_timing_dummy")


async def authenticate_user(store: UserStore, username: str, password: str) -> Optional[User]:
    """Authenticate a username/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the active User on success, None on any failure.
    """
    user = await store.get_by_username(username)
    if user is None or not user.password_hash:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# JWT issue / verify
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and verifies signed identity tokens.

    clock is injectable so tests can issue tokens "in the past". Expiry itself
    is always checked by python-jose against the real wall clock.
    """

    def __init__(self, settings: Settings, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._secret_key = settings.secret_key
        self._expire_seconds = settings.token_expire_seconds
        self._clock = clock or _utcnow

    @property
    def expire_seconds(self) -> int:
        return self._expire_seconds

    def issue(self, user: User) -> str:
        """Encode a signed JWT for user, valid for the configured window."""
        issued_at = self._clock()
        payload = {
            "id": user.id,
            "username": user.username,
            "full_name": user.full_name or user.username,
            "role": user.role,
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=self._expire_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> Claims:
        """Decode and verify token, returning the embedded claims verbatim.

        Raises InvalidTokenError on a bad signature, malformed token, missing
        claims or expiry.
        """
        if not token:
            raise InvalidTokenError("empty token")
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            raise InvalidTokenError(str(exc)) from exc

        user_id = payload.get("id")
        username = payload.get("username")
        role = payload.get("role")
        if not isinstance(user_id, int) or not isinstance(username, str) or not isinstance(role, str):
            raise InvalidTokenError("missing identity claims")
        return Claims(
            id=user_id,
            username=username,
            full_name=payload.get("full_name") or username,
            role=role,
        )
