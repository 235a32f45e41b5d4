"""
Password hashing and JWT helpers.
"""

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import bcrypt
import jwt

from bazaar.core.config import settings
from bazaar.core.exceptions import AuthenticationError

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


def hash_secret(secret: str) -> str:
    """Hash a password or OTP code with bcrypt."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(secret.encode("utf-8"), salt).decode("utf-8")


def verify_secret(secret: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def _encode(subject: int, token_type: str, expires: timedelta, secret: str) -> str:
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(subject),
        "type": token_type,
        "iat": now,
        "exp": now + expires,
        "jti": uuid4().hex,
    }
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: int) -> str:
    return _encode(
        user_id,
        ACCESS_TOKEN,
        timedelta(minutes=settings.jwt_access_token_expire_minutes),
        settings.jwt_secret_key,
    )


def create_refresh_token(user_id: int) -> str:
    return _encode(
        user_id,
        REFRESH_TOKEN,
        timedelta(days=settings.jwt_refresh_token_expire_days),
        settings.jwt_refresh_secret_key,
    )


def decode_token(token: str, token_type: str = ACCESS_TOKEN) -> int:
    """
    Decode a token and return the user id it was issued for.

    Raises:
        AuthenticationError: token is malformed, expired or of the wrong type
    """
    secret = (
        settings.jwt_refresh_secret_key
        if token_type == REFRESH_TOKEN
        else settings.jwt_secret_key
    )
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")

    if payload.get("type") != token_type:
        raise AuthenticationError("Invalid token type")

    try:
        return int(payload["sub"])
    except (KeyError, ValueError):
        raise AuthenticationError("Invalid token payload")
