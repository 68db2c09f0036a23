"""
post endpoints implementation
- Post creation
- Single post read (visibility checked)
- Soft delete by the author
"""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from feedengine.core.security import get_current_user
from feedengine.crud.post import create_post, get_visible_post, soft_delete_post
from feedengine.db.database import get_db
from feedengine.models.user import User
from feedengine.schemas.post import PostCreate, PostRead

router = APIRouter(prefix="/posts", tags=["posts"])


@router.post("", response_model=PostRead, status_code=status.HTTP_201_CREATED)
async def create_new_post(
    post_in: PostCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await create_post(db, current_user.id, post_in)


@router.get("/{post_id}", response_model=PostRead)
async def read_post(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Posts the current user may not see are reported as 404"""
    return await get_visible_post(db, current_user.id, post_id)


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await soft_delete_post(db, current_user.id, post_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
