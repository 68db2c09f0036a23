from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from feedengine.core.security import get_current_user
from feedengine.crud.follow import follow_user, unfollow_user
from feedengine.db.database import get_db
from feedengine.models.user import User
from feedengine.schemas.follow import FollowResult

router = APIRouter(prefix="/users", tags=["follow"])


@router.post("/{user_id}/follow", response_model=FollowResult, status_code=status.HTTP_200_OK)
async def follow(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Follow user_id; following again is a no-op"""
    return await follow_user(db, current_user.id, user_id)


@router.delete("/{user_id}/follow", response_model=FollowResult)
async def unfollow(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await unfollow_user(db, current_user.id, user_id)
