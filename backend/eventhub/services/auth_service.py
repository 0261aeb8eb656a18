"""
Authentication service handling user registration and login.
"""

import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from eventhub.models.user import User
from eventhub.schemas.user import UserCreate, UserLogin
from eventhub.core.exceptions import ConflictError, UnauthenticatedError
from eventhub.core.security import hash_password, verify_password, create_access_token
from eventhub.core.logging import get_logger

logger = get_logger(__name__)


async def register_user(db: AsyncSession, user_data: UserCreate) -> User:
    """
    Register a new user with hashed password.
    Raises 409 if email or username already exists.
    """
    result = await db.execute(select(User).where(User.email == user_data.email))
    if result.scalar_one_or_none():
        logger.warning("registration_failed", reason="email_exists", email=user_data.email)
        raise ConflictError("Email already registered")

    result = await db.execute(select(User).where(User.username == user_data.username))
    if result.scalar_one_or_none():
        logger.warning("registration_failed", reason="username_exists", username=user_data.username)
        raise ConflictError("Username already taken")

    user = User(
        email=user_data.email,
        username=user_data.username,
        hashed_password=await asyncio.to_thread(hash_password, user_data.password),
        is_guest=user_data.is_guest,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    logger.info("user_registered", user_id=user.id, email=user.email, guest=user.is_guest)
    return user


async def authenticate_user(db: AsyncSession, login_data: UserLogin) -> str:
    """
    Authenticate user and return JWT access token.
    Raises 401 if credentials are invalid.
    """
    result = await db.execute(select(User).where(User.email == login_data.email))
    user = result.scalar_one_or_none()

    # bcrypt is CPU bound; keep it off the event loop
    if not user or not await asyncio.to_thread(verify_password, login_data.password, user.hashed_password):
        logger.warning("login_failed", email=login_data.email)
        raise UnauthenticatedError("Invalid email or password")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    token = create_access_token(user.id, user.username)
    logger.info("user_logged_in", user_id=user.id)
    return token


async def get_user(db: AsyncSession, user_id: int) -> User:
    """
    Load the caller's account.
    A token for a vanished user is unauthenticated; a deactivated account gets 403, as at login.
    """
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise UnauthenticatedError("User no longer exists")
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )
    return user
