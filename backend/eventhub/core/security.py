"""
Password hashing, JWT issuing/verification and the request-level access guard.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from eventhub.core.config import get_settings
from eventhub.core.exceptions import UnauthenticatedError
from eventhub.core.logging import bind_identity

ACCESS_TOKEN_TYPE = "access"

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    user_id: int
    username: str


def hash_password(password: str) -> str:
    password_bytes = password.encode("utf-8")[:_BCRYPT_MAX_BYTES]
    return bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    password_bytes = plain_password.encode("utf-8")[:_BCRYPT_MAX_BYTES]
    try:
        return bcrypt.checkpw(password_bytes, hashed_password.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user_id: int, username: str, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "username": username,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Identity:
    """
    Verify signature, expiry and claims of an access token.
    Raises UnauthenticatedError on any failure.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as exc:
        raise UnauthenticatedError("Invalid or expired token") from exc

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise UnauthenticatedError("Invalid token type")

    subject = payload.get("sub")
    username = payload.get("username")
    if not subject or not username:
        raise UnauthenticatedError("Invalid authentication payload")

    try:
        user_id = int(subject)
    except ValueError as exc:
        raise UnauthenticatedError("Invalid authentication payload") from exc

    return Identity(user_id=user_id, username=username)


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    """Access guard: requires `Authorization: Bearer <token>`."""
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("Not authorized, token missing")

    identity = decode_access_token(credentials.credentials)
    bind_identity(identity.user_id, identity.username)
    return identity


async def get_current_user_id(identity: Identity = Depends(get_current_identity)) -> int:
    return identity.user_id
