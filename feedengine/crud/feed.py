"""
Feed builder: one page of a viewer's feed, default or custom.

Rows come from the content store already filtered by the compiled predicate
and the bulk visibility clause; each row is re-checked with the in-process
authorizer before it is kept. Scanning continues in chunks until
page_size + 1 authorized rows are collected or the source runs dry, so a
page is only short when the feed really is exhausted.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from feedengine.core.config import settings
from feedengine.core.exceptions import StoreTimeoutError
from feedengine.core.visibility import following_subquery, visibility_clause
from feedengine.crud.follow import load_visibility_context
from feedengine.crud.post import (
    cursor_position,
    enrich_posts,
    find_content,
    predicate_clause,
)
from feedengine.db.database import translate_store_error
from feedengine.models.feed_definition import FeedDefinition
from feedengine.models.post import Post
from feedengine.schemas.enums import CombineMode
from feedengine.schemas.post import PostRead
from feedengine.utils.cursor import CursorPosition, decode_cursor, encode_cursor
from feedengine.utils.filter_compiler import (
    DEFAULT_PIPELINE,
    CompiledPipeline,
    compile_pipeline,
    parse_blocks,
)

logger = logging.getLogger(__name__)


@dataclass
class FeedPage:
    items: List[PostRead] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


def clamp_page_size(page_size: Optional[int]) -> int:
    if page_size is None:
        page_size = settings.DEFAULT_PAGE_SIZE
    return max(1, min(int(page_size), settings.MAX_PAGE_SIZE))


def pipeline_for(feed_definition: Optional[FeedDefinition]) -> CompiledPipeline:
    if feed_definition is None or not feed_definition.blocks:
        return DEFAULT_PIPELINE
    blocks = parse_blocks(feed_definition.blocks)
    return compile_pipeline(blocks, CombineMode(feed_definition.combine_mode))


def author_scope_clause(pipeline: CompiledPipeline, viewer_id: str) -> Optional[ColumnElement]:
    """
    Authors whose posts may appear in the feed; None when nobody qualifies.
    An AND-mode author include set replaces the viewer's graph scope;
    otherwise the scope is the viewer plus everyone they follow.
    """
    excluded = sorted(pipeline.excluded_authors)
    if pipeline.included_authors is not None:
        authors = set(pipeline.included_authors) - set(excluded)
        if not authors:
            return None
        return Post.author_id.in_(sorted(authors))

    rules = [
        Post.author_id == viewer_id,
        Post.author_id.in_(following_subquery(viewer_id)),
    ]
    if pipeline.referenced_authors:
        rules.append(Post.author_id.in_(sorted(pipeline.referenced_authors)))
    scope = or_(*rules)
    if excluded:
        scope = and_(scope, Post.author_id.not_in(excluded))
    return scope


async def _collect(
    db: AsyncSession,
    viewer_id: str,
    pipeline: CompiledPipeline,
    page_size: int,
    after: Optional[CursorPosition],
) -> FeedPage:
    scope = author_scope_clause(pipeline, viewer_id)
    if scope is None:
        return FeedPage()

    context = await load_visibility_context(db, viewer_id)
    clauses = [visibility_clause(viewer_id)]
    predicate = predicate_clause(pipeline.predicate)
    if predicate is not None:
        clauses.append(predicate)

    wanted = page_size + 1
    collected: List[Post] = []
    scan_from = after
    while len(collected) < wanted:
        chunk = await find_content(
            db,
            scope,
            after=scan_from,
            order=pipeline.sort,
            limit=wanted,
            extra_clauses=clauses,
        )
        for post in chunk:
            if context.can_view(post):
                collected.append(post)
                if len(collected) == wanted:
                    break
        if len(chunk) < wanted:
            break
        scan_from = cursor_position(chunk[-1], pipeline.sort)

    has_more = len(collected) > page_size
    page = collected[:page_size]
    next_cursor = None
    if has_more and page:
        next_cursor = encode_cursor(cursor_position(page[-1], pipeline.sort))

    return FeedPage(
        items=await enrich_posts(db, page),
        next_cursor=next_cursor,
        has_more=has_more,
    )


async def build_page(
    db: AsyncSession,
    viewer_id: str,
    feed_definition: Optional[FeedDefinition] = None,
    page_size: Optional[int] = None,
    cursor: Optional[str] = None,
) -> FeedPage:
    """
    Build one page of the viewer's feed.

    Raises InvalidCursorError for a malformed cursor, StoreTimeoutError when
    the page cannot be assembled within FEED_QUERY_TIMEOUT_SECONDS and
    StoreUnavailableError / InternalEngineError for store failures. A page
    is either returned whole or not at all.
    """
    viewer_id = str(viewer_id)
    pipeline = pipeline_for(feed_definition)
    page_size = pipeline.effective_page_size(clamp_page_size(page_size))
    after = decode_cursor(cursor, expected_sort=pipeline.sort.order) if cursor is not None else None
    feed_id = feed_definition.id if feed_definition is not None else None

    if pipeline.predicate.always_false:
        return FeedPage()

    try:
        return await asyncio.wait_for(
            _collect(db, viewer_id, pipeline, page_size, after),
            timeout=settings.FEED_QUERY_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Feed page timed out for viewer={viewer_id} feed={feed_id} cursor={cursor}")
        await db.rollback()
        raise StoreTimeoutError()
    except SQLAlchemyError as e:
        logger.error(
            f"Feed query failed for viewer={viewer_id} feed={feed_id} cursor={cursor}: {str(e)}",
            exc_info=True
        )
        await db.rollback()
        raise translate_store_error(e) from e
