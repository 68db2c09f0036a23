"""
user endpoints
- account creation and lookup
- following / followers / friends listings
- mutual check against the current user
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from feedengine.core.security import get_current_user
from feedengine.crud import follow as graph
from feedengine.crud.user import create_user, require_user
from feedengine.db.database import get_db
from feedengine.models.user import User
from feedengine.schemas.follow import MutualStatus, RelationshipPage
from feedengine.schemas.user import UserCreate, UserPublic

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def register_user(
    user_in: UserCreate,
    db: AsyncSession = Depends(get_db),
):
    return await create_user(db, user_in)


@router.get("/{user_id}", response_model=UserPublic)
async def read_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await require_user(db, user_id)


@router.get("/{user_id}/following", response_model=RelationshipPage)
async def read_following(
    user_id: str,
    cursor: Optional[str] = Query(None),
    limit: int = Query(20, ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await require_user(db, user_id)
    users, next_cursor, has_more = await graph.list_following(db, user_id, limit=limit, cursor=cursor)
    return RelationshipPage(users=users, next_cursor=next_cursor, has_more=has_more)


@router.get("/{user_id}/followers", response_model=RelationshipPage)
async def read_followers(
    user_id: str,
    cursor: Optional[str] = Query(None),
    limit: int = Query(20, ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await require_user(db, user_id)
    users, next_cursor, has_more = await graph.list_followers(db, user_id, limit=limit, cursor=cursor)
    return RelationshipPage(users=users, next_cursor=next_cursor, has_more=has_more)


@router.get("/{user_id}/friends", response_model=RelationshipPage)
async def read_friends(
    user_id: str,
    cursor: Optional[str] = Query(None),
    limit: int = Query(20, ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await require_user(db, user_id)
    users, next_cursor, has_more = await graph.list_friends(db, user_id, limit=limit, cursor=cursor)
    return RelationshipPage(users=users, next_cursor=next_cursor, has_more=has_more)


@router.get("/{user_id}/mutual", response_model=MutualStatus)
async def read_mutual(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Whether the current user and user_id follow each other"""
    await require_user(db, user_id)
    return MutualStatus(
        user_id=current_user.id,
        other_user_id=user_id,
        is_mutual=await graph.is_mutual(db, current_user.id, user_id),
    )
