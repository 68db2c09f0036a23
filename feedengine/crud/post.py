"""
Post CRUD operations and the content-store queries used by the feed builder:
- find_content / find_content_by_authors / find_content_by_id
- translation of compiled filter predicates into SQL
- single-post reads guarded by the visibility authorizer
"""

import logging
import re
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, false, not_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from feedengine.core import error_codes
from feedengine.core.exceptions import NotFoundError, PermissionDeniedError
from feedengine.core.visibility import can_view
from feedengine.crud.follow import is_following, is_mutual
from feedengine.models.post import Post, PostTag
from feedengine.schemas.enums import CombineMode, EngagementMetric, PostType, SortOrder
from feedengine.schemas.post import MAX_TAG_LENGTH, PostCreate, PostRead, normalize_tag
from feedengine.utils.cursor import CursorPosition, keyset_clause
from feedengine.utils.filter_compiler import (
    AUTHOR,
    CREATED_AT,
    POST_TYPE,
    TAG,
    Condition,
    Predicate,
    SetCondition,
    SortSpec,
)

logger = logging.getLogger(__name__)

HASHTAG_PATTERN = re.compile(r"#(\w+)")

RANGE_COLUMNS = {
    CREATED_AT: Post.created_at,
    EngagementMetric.LIKES.value: Post.likes_count,
    EngagementMetric.COMMENTS.value: Post.comments_count,
    EngagementMetric.REPOSTS.value: Post.reposts_count,
}


def extract_tags(content: str, explicit_tags: Iterable[str] = ()) -> List[str]:
    """
    Explicit tags plus #hashtags from the content, normalized and de-duplicated.
    Hashtags longer than MAX_TAG_LENGTH are left as plain text.
    """
    tags = [normalize_tag(tag) for tag in explicit_tags]
    tags.extend(normalize_tag(match) for match in HASHTAG_PATTERN.findall(content or ""))
    return list(dict.fromkeys(tag for tag in tags if tag and len(tag) <= MAX_TAG_LENGTH))


def condition_clause(condition: Condition) -> ColumnElement:
    if isinstance(condition, SetCondition):
        values = sorted(condition.values)
        if condition.field == AUTHOR:
            clause = Post.author_id.in_(values)
        elif condition.field == POST_TYPE:
            clause = Post.post_type.in_([PostType(value) for value in values])
        elif condition.field == TAG:
            clause = Post.id.in_(select(PostTag.post_id).where(PostTag.tag.in_(values)))
        else:
            raise ValueError(f"Unknown set field {condition.field}")
    else:
        column = RANGE_COLUMNS[condition.field]
        bounds = []
        if condition.lower is not None:
            bounds.append(column >= condition.lower)
        if condition.upper is not None:
            bounds.append(column <= condition.upper)
        clause = and_(*bounds)

    return not_(clause) if condition.negated else clause


def predicate_clause(predicate: Predicate) -> Optional[ColumnElement]:
    """SQL form of a compiled predicate; None when it does not restrict anything"""
    if predicate.always_false:
        return false()
    if not predicate.conditions:
        return None

    clauses = [condition_clause(condition) for condition in predicate.conditions]
    if predicate.mode == CombineMode.OR:
        return or_(*clauses)
    return and_(*clauses)


def order_columns(sort: SortSpec) -> list:
    if sort.order == SortOrder.POPULAR:
        return [Post.likes_count.desc(), Post.created_at.desc(), Post.id.desc()]
    return [Post.created_at.desc(), Post.id.desc()]


def cursor_position(post: Post, sort: SortSpec) -> CursorPosition:
    return CursorPosition(
        sort=sort.order,
        created_at=post.created_at,
        id=post.id,
        rank=post.likes_count if sort.order == SortOrder.POPULAR else None,
    )


async def find_content(
    session: AsyncSession,
    scope: ColumnElement,
    after: Optional[CursorPosition],
    order: SortSpec,
    limit: int,
    extra_clauses: Sequence[ColumnElement] = (),
) -> List[Post]:
    """Non-deleted posts matching `scope`, strictly after `after`, in `order`"""
    if limit <= 0:
        return []

    query = select(Post).where(scope, Post.deleted == false(), *extra_clauses)
    if after is not None:
        query = query.where(keyset_clause(after, Post.created_at, Post.id, Post.likes_count))

    result = await session.execute(
        query.order_by(*order_columns(order)).limit(limit)
    )
    return list(result.scalars().all())


async def find_content_by_authors(
    session: AsyncSession,
    author_ids: Iterable[str],
    after: Optional[CursorPosition],
    order: SortSpec,
    limit: int,
    extra_clauses: Sequence[ColumnElement] = (),
) -> List[Post]:
    author_ids = sorted(set(author_ids))
    if not author_ids:
        return []
    return await find_content(
        session, Post.author_id.in_(author_ids), after, order, limit, extra_clauses
    )


async def find_content_by_id(session: AsyncSession, post_id: str) -> Optional[Post]:
    result = await session.execute(
        select(Post).where(Post.id == str(post_id))
    )
    return result.scalars().first()


async def get_tags_for_posts(session: AsyncSession, post_ids: Iterable[str]) -> Dict[str, List[str]]:
    """Batch tag lookup for a page of posts"""
    post_ids = list(post_ids)
    tags: Dict[str, List[str]] = defaultdict(list)
    if not post_ids:
        return tags
    result = await session.execute(
        select(PostTag.post_id, PostTag.tag)
        .where(PostTag.post_id.in_(post_ids))
        .order_by(PostTag.post_id, PostTag.tag)
    )
    for post_id, tag in result.all():
        tags[post_id].append(tag)
    return tags


def to_post_read(post: Post, tags: Optional[List[str]] = None) -> PostRead:
    return PostRead(
        id=post.id,
        author_id=post.author_id,
        content=post.content,
        post_type=post.post_type,
        visibility=post.visibility,
        tags=tags or [],
        likes_count=post.likes_count,
        comments_count=post.comments_count,
        reposts_count=post.reposts_count,
        created_at=post.created_at,
        updated_at=post.updated_at,
    )


async def enrich_posts(session: AsyncSession, posts: List[Post]) -> List[PostRead]:
    tags = await get_tags_for_posts(session, [post.id for post in posts])
    return [to_post_read(post, tags.get(post.id)) for post in posts]


async def create_post(session: AsyncSession, author_id: str, post_in: PostCreate) -> PostRead:
    tags = extract_tags(post_in.content, post_in.tags)
    now = datetime.utcnow()
    db_post = Post(
        author_id=str(author_id),
        content=post_in.content,
        post_type=post_in.post_type,
        visibility=post_in.visibility,
        created_at=now,
        updated_at=now,
    )
    session.add(db_post)
    await session.flush()

    for tag in tags:
        session.add(PostTag(post_id=db_post.id, tag=tag))

    await session.commit()
    await session.refresh(db_post)
    logger.info(f"Post {db_post.id} created by {author_id}")
    return to_post_read(db_post, tags)


async def get_visible_post(session: AsyncSession, viewer_id: str, post_id: str) -> PostRead:
    """
    Single-post read through the in-process authorizer.
    Posts the viewer may not see are reported as missing.
    """
    post = await find_content_by_id(session, post_id)
    if post is None:
        raise NotFoundError("Post not found", error_code=error_codes.POST_NOT_FOUND)

    viewer_id = str(viewer_id)
    following = False
    is_friend = False
    if viewer_id != post.author_id:
        following = await is_following(session, viewer_id, post.author_id)
        is_friend = await is_mutual(session, viewer_id, post.author_id)

    if not can_view(viewer_id, post, following, is_friend):
        raise NotFoundError("Post not found", error_code=error_codes.POST_NOT_FOUND)

    tags = await get_tags_for_posts(session, [post.id])
    return to_post_read(post, tags.get(post.id))


async def soft_delete_post(session: AsyncSession, user_id: str, post_id: str) -> None:
    post = await find_content_by_id(session, post_id)
    if post is None or post.deleted:
        raise NotFoundError("Post not found", error_code=error_codes.POST_NOT_FOUND)
    if post.author_id != str(user_id):
        raise PermissionDeniedError("You can only delete your own posts")

    await session.execute(
        update(Post)
        .where(Post.id == post.id)
        .values(deleted=True, deleted_at=datetime.utcnow())
    )
    await session.commit()
    logger.info(f"Post {post.id} soft-deleted by {user_id}")
