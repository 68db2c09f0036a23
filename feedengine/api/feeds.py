from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from feedengine.core.security import get_current_user
from feedengine.crud.feed_definition import (
    create_feed_definition,
    delete_feed_definition,
    get_feed_definition,
    list_feed_definitions,
    update_feed_definition,
)
from feedengine.db.database import get_db
from feedengine.models.user import User
from feedengine.schemas.feed import FeedDefinitionCreate, FeedDefinitionRead, FeedDefinitionUpdate

router = APIRouter(prefix="/feeds", tags=["feeds"])


@router.post("", response_model=FeedDefinitionRead, status_code=status.HTTP_201_CREATED)
async def create_feed(
    feed_in: FeedDefinitionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Blocks are validated and compiled before anything is stored"""
    return await create_feed_definition(db, current_user.id, feed_in)


@router.get("", response_model=List[FeedDefinitionRead])
async def list_feeds(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await list_feed_definitions(db, current_user.id)


@router.get("/{feed_id}", response_model=FeedDefinitionRead)
async def read_feed(
    feed_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await get_feed_definition(db, current_user.id, feed_id)


@router.patch("/{feed_id}", response_model=FeedDefinitionRead)
async def update_feed(
    feed_id: str,
    feed_in: FeedDefinitionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await update_feed_definition(db, current_user.id, feed_id, feed_in)


@router.delete("/{feed_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_feed(
    feed_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await delete_feed_definition(db, current_user.id, feed_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
