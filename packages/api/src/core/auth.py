# This project was developed with assistance from AI tools.
"""Pure auth utility functions with no FastAPI or HTTP dependencies.

Password hashing (bcrypt) and session-token signing (PyJWT, HS256). The
token only carries the session id; whether the session is still valid is
decided by the ``user_sessions`` row, not by the token.
"""

import hashlib
import secrets
from datetime import UTC, datetime, timedelta
from functools import lru_cache

import bcrypt
import jwt

from ..schemas.auth import TokenPayload

TOKEN_ALGORITHM = "HS256"
BCRYPT_ROUNDS = 12

# bcrypt only looks at the first 72 bytes of the password.
_BCRYPT_MAX_BYTES = 72


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check; malformed stored hashes count as a mismatch."""
    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:_BCRYPT_MAX_BYTES], password_hash.encode("utf-8")
        )
    except ValueError:
        return False


@lru_cache(maxsize=1)
def dummy_password_hash() -> str:
    """Hash checked when no account matches, so lookups cost the same either way."""
    return hash_password(secrets.token_urlsafe(16))


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def encode_session_token(sid: str, user_id: int, secret: str, expires_at: datetime) -> str:
    payload = {
        "sid": sid,
        "sub": str(user_id),
        "iat": datetime.now(UTC),
        "exp": expires_at,
    }
    return jwt.encode(payload, secret, algorithm=TOKEN_ALGORITHM)


def decode_session_token(token: str, secret: str) -> TokenPayload:
    """Validate signature and expiry. Raises jwt.InvalidTokenError subclasses."""
    payload = jwt.decode(
        token,
        secret,
        algorithms=[TOKEN_ALGORITHM],
        options={"require": ["sid", "sub", "exp"]},
    )
    return TokenPayload(**payload)


def session_expiry(ttl_hours: int) -> datetime:
    return datetime.now(UTC) + timedelta(hours=ttl_hours)


def new_reset_token() -> str:
    return secrets.token_urlsafe(32)


def hash_reset_token(token: str) -> str:
    """Reset tokens are stored as SHA-256 digests; the raw value is handed out once."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
