"""
feed endpoint
- default timeline (viewer + followed users)
- custom feeds by feed_id
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from feedengine.core.security import get_current_user
from feedengine.crud.feed import build_page
from feedengine.crud.feed_definition import get_default_feed_definition, get_feed_definition
from feedengine.db.database import get_db, run_with_store_retry
from feedengine.models.user import User
from feedengine.schemas.feed import FeedPageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feed", tags=["feed"])


@router.get("", response_model=FeedPageResponse)
async def get_feed(
    feed_id: Optional[str] = Query(None),
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    One page of the current user's feed.
    Without feed_id the user's default feed is used, or the plain
    following timeline when no default is set.
    """
    if feed_id is not None:
        feed_definition = await get_feed_definition(db, current_user.id, feed_id)
    else:
        feed_definition = await get_default_feed_definition(db, current_user.id)

    page = await run_with_store_retry(
        db,
        lambda: build_page(db, current_user.id, feed_definition, page_size=limit, cursor=cursor),
    )
    return FeedPageResponse(items=page.items, next_cursor=page.next_cursor, has_more=page.has_more)
