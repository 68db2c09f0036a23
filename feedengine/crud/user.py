"""
User CRUD operations
"""
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from feedengine.core import error_codes
from feedengine.core.exceptions import ConflictError, NotFoundError
from feedengine.models.user import User
from feedengine.schemas.user import UserCreate

logger = logging.getLogger(__name__)


async def create_user(session: AsyncSession, user_data: UserCreate) -> User:
    """Create a new user; usernames are unique case-insensitively"""
    existing = await get_user_by_username(session, user_data.username)
    if existing:
        raise ConflictError("Username already taken", error_code=error_codes.USERNAME_TAKEN)

    db_user = User(**user_data.model_dump())
    session.add(db_user)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("Username already taken", error_code=error_codes.USERNAME_TAKEN)
    await session.refresh(db_user)
    logger.info(f"Created user {db_user.id}")
    return db_user


async def get_user_by_id(session: AsyncSession, user_id: str) -> Optional[User]:
    result = await session.execute(
        select(User).where(User.id == str(user_id))
    )
    return result.scalars().first()


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    """Case-insensitive username lookup"""
    result = await session.execute(
        select(User).where(func.lower(User.username) == username.lower())
    )
    return result.scalars().first()


async def require_user(session: AsyncSession, user_id: str) -> User:
    user = await get_user_by_id(session, user_id)
    if not user:
        raise NotFoundError("User not found", error_code=error_codes.USER_NOT_FOUND)
    return user
