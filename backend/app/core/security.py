from datetime import datetime, timedelta, timezone
from typing import Any, Optional
import secrets

import bcrypt
from jose import jwt, JWTError

from app.core.config import Settings, settings
from app.core.exceptions import UnauthorizedError


def create_session_token(
    user_id: str,
    email: str,
    role: str,
    expires_delta: Optional[timedelta] = None,
    config: Optional[Settings] = None,
) -> str:
    """
    Create a signed session token for a user.

    Args:
        user_id: Local user id
        email: User email
        role: User role (USER or ADMIN)
        expires_delta: Optional lifetime override; defaults to SESSION_TOKEN_EXPIRE_HOURS
        config: Settings holding the signing key; defaults to the environment-loaded settings

    Returns:
        Encoded JWT
    """
    config = config or settings
    now = datetime.now(timezone.utc)
    if expires_delta is None:
        expires_delta = timedelta(hours=config.SESSION_TOKEN_EXPIRE_HOURS)

    to_encode = {
        "sub": str(user_id),
        "userId": str(user_id),
        "email": email,
        "role": role,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_session_token(token: str, config: Optional[Settings] = None) -> dict[str, Any]:
    """
    Verify a session token's signature and expiry.

    Raises:
        UnauthorizedError: If the token is malformed, tampered with or expired
    """
    config = config or settings
    try:
        return jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise UnauthorizedError("Invalid token")


def _prepare_password(password: str) -> bytes:
    """Encode and truncate to bcrypt's 72 byte limit."""
    return password.encode('utf-8')[:72]


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(
        _prepare_password(plain_password),
        hashed_password.encode('utf-8')
    )


def get_password_hash(password: str) -> str:
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(_prepare_password(password), salt)
    return hashed.decode('utf-8')


def generate_unusable_password_hash() -> str:
    """
    Hash of a random password nobody knows.

    SSO-provisioned accounts get one so the password column is never empty
    while password login stays impossible.
    """
    return get_password_hash(secrets.token_hex(32))


def generate_random_token(nbytes: int = 32) -> str:
    """Hex-encoded random token (state, nonce)."""
    return secrets.token_hex(nbytes)
