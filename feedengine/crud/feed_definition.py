"""
FeedDefinition CRUD operations.

Blocks are parsed and compiled on every save so a stored definition always
compiles; the normalized form from serialize_blocks is what gets persisted.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from feedengine.core import error_codes
from feedengine.core.config import settings
from feedengine.core.exceptions import ConflictError, NotFoundError
from feedengine.models.feed_definition import FeedDefinition
from feedengine.schemas.enums import CombineMode
from feedengine.schemas.feed import FeedDefinitionCreate, FeedDefinitionUpdate
from feedengine.utils.filter_compiler import compile_pipeline, parse_blocks, serialize_blocks

logger = logging.getLogger(__name__)


def _validated_blocks(raw_blocks, combine_mode: CombineMode) -> list:
    blocks = parse_blocks(raw_blocks)
    compile_pipeline(blocks, combine_mode)
    return serialize_blocks(blocks)


async def _ensure_name_available(
    session: AsyncSession,
    owner_id: str,
    name: str,
    exclude_id: Optional[str] = None,
) -> None:
    query = select(FeedDefinition.id).where(
        FeedDefinition.owner_id == owner_id,
        func.lower(FeedDefinition.name) == name.strip().lower()
    )
    if exclude_id is not None:
        query = query.where(FeedDefinition.id != exclude_id)
    result = await session.execute(query)
    if result.first() is not None:
        raise ConflictError("A feed with this name already exists", error_code=error_codes.FEED_NAME_TAKEN)


async def _clear_default(session: AsyncSession, owner_id: str, keep_id: Optional[str] = None) -> None:
    query = update(FeedDefinition).where(
        FeedDefinition.owner_id == owner_id,
        FeedDefinition.is_default == True  # noqa: E712
    )
    if keep_id is not None:
        query = query.where(FeedDefinition.id != keep_id)
    # "fetch" keeps definitions already loaded in the session in step with the table
    await session.execute(
        query.values(is_default=False).execution_options(synchronize_session="fetch")
    )


async def _commit_or_conflict(session: AsyncSession) -> None:
    """Commit; a unique-index violation from a concurrent save surfaces as ConflictError."""
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        if "uq_feeddefinition_owner_default" in str(e.orig):
            raise ConflictError("Another feed was made default at the same time")
        raise ConflictError("A feed with this name already exists", error_code=error_codes.FEED_NAME_TAKEN)


async def create_feed_definition(
    session: AsyncSession,
    owner_id: str,
    feed_in: FeedDefinitionCreate,
) -> FeedDefinition:
    owner_id = str(owner_id)
    blocks = _validated_blocks(feed_in.blocks, feed_in.combine_mode)
    await _ensure_name_available(session, owner_id, feed_in.name)

    count = await session.execute(
        select(func.count()).select_from(FeedDefinition).where(FeedDefinition.owner_id == owner_id)
    )
    if count.scalar_one() >= settings.MAX_FEEDS_PER_USER:
        raise ConflictError(
            f"A user may have at most {settings.MAX_FEEDS_PER_USER} feeds",
            error_code=error_codes.FEED_LIMIT_REACHED
        )

    if feed_in.is_default:
        await _clear_default(session, owner_id)

    now = datetime.utcnow()
    feed = FeedDefinition(
        owner_id=owner_id,
        name=feed_in.name,
        blocks=blocks,
        combine_mode=feed_in.combine_mode.value,
        is_default=feed_in.is_default,
        created_at=now,
        updated_at=now,
    )
    session.add(feed)
    await _commit_or_conflict(session)
    await session.refresh(feed)
    logger.info(f"Feed definition {feed.id} created by {owner_id}")
    return feed


async def get_feed_definition(session: AsyncSession, owner_id: str, feed_id: str) -> FeedDefinition:
    """Owner-only read; someone else's feed is reported as missing."""
    result = await session.execute(
        select(FeedDefinition).where(
            FeedDefinition.id == str(feed_id),
            FeedDefinition.owner_id == str(owner_id)
        ).execution_options(populate_existing=True)
    )
    feed = result.scalars().first()
    if feed is None:
        raise NotFoundError("Feed not found", error_code=error_codes.FEED_NOT_FOUND)
    return feed


async def get_default_feed_definition(session: AsyncSession, owner_id: str) -> Optional[FeedDefinition]:
    result = await session.execute(
        select(FeedDefinition).where(
            FeedDefinition.owner_id == str(owner_id),
            FeedDefinition.is_default == True  # noqa: E712
        )
    )
    return result.scalars().first()


async def list_feed_definitions(session: AsyncSession, owner_id: str) -> List[FeedDefinition]:
    result = await session.execute(
        select(FeedDefinition)
        .where(FeedDefinition.owner_id == str(owner_id))
        .order_by(FeedDefinition.created_at, FeedDefinition.id)
    )
    return list(result.scalars().all())


async def update_feed_definition(
    session: AsyncSession,
    owner_id: str,
    feed_id: str,
    feed_in: FeedDefinitionUpdate,
) -> FeedDefinition:
    owner_id = str(owner_id)
    feed = await get_feed_definition(session, owner_id, feed_id)

    combine_mode = feed_in.combine_mode or CombineMode(feed.combine_mode)
    raw_blocks = feed_in.blocks if feed_in.blocks is not None else feed.blocks
    blocks = _validated_blocks(raw_blocks, combine_mode)

    if feed_in.name is not None:
        await _ensure_name_available(session, owner_id, feed_in.name, exclude_id=feed.id)
        feed.name = feed_in.name
    if feed_in.is_default:
        await _clear_default(session, owner_id, keep_id=feed.id)
    if feed_in.is_default is not None:
        feed.is_default = feed_in.is_default

    feed.blocks = blocks
    feed.combine_mode = combine_mode.value
    feed.updated_at = datetime.utcnow()
    session.add(feed)
    await _commit_or_conflict(session)
    await session.refresh(feed)
    logger.info(f"Feed definition {feed.id} updated by {owner_id}")
    return feed


async def delete_feed_definition(session: AsyncSession, owner_id: str, feed_id: str) -> None:
    feed = await get_feed_definition(session, owner_id, feed_id)
    await session.delete(feed)
    await session.commit()
    logger.info(f"Feed definition {feed_id} deleted by {owner_id}")
