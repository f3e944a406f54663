"""Password hashing, email normalization, and access token signing."""

from datetime import UTC, datetime, timedelta

import bcrypt
import jwt as pyjwt

from app.core.config import Settings

# bcrypt only considers the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72


def normalize_email(email: str) -> str:
    """Lower-case and trim an email address before it is stored or looked up."""
    return email.strip().lower()


def hash_password(password: str, rounds: int = 10) -> str:
    raw = password.encode("utf-8")[:_BCRYPT_MAX_BYTES]
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    raw = password.encode("utf-8")[:_BCRYPT_MAX_BYTES]
    try:
        return bcrypt.checkpw(raw, hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def create_access_token(user_id: str, settings: Settings, now: datetime | None = None) -> str:
    """Sign a JWT whose ``id`` claim identifies the user."""
    issued_at = now or datetime.now(UTC)
    payload = {
        "id": user_id,
        "iat": issued_at,
        "exp": issued_at + timedelta(hours=settings.jwt_expires_hours),
    }
    return pyjwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> dict:
    """Verify signature and expiry and return the claims.

    Raises ``jwt.InvalidTokenError`` (or a subclass) on any failure.
    """
    return pyjwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["id", "exp", "iat"]},
    )
