"""
Social graph store: follow edges and the friendship relation derived from them.

Every mutation runs as one transaction on the given session:
1. lock both user rows in id order (serializes concurrent mutations on the
   same pair without deadlocking),
2. insert/delete the edge with insert-if-absent semantics,
3. materialize or demolish the canonical friendship row and adjust the
   cached counters, only for rows actually written.
A failure rolls the whole unit back, so readers see the graph either before
or after a mutation, never with a half-materialized friendship.
"""

import logging
from datetime import datetime
from typing import List, Optional, Set, Tuple

from sqlalchemy import and_, delete, or_, select, union_all, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedengine.core import error_codes
from feedengine.core.config import settings
from feedengine.core.exceptions import FeedEngineError, NotFoundError, SelfFollowError
from feedengine.core.visibility import VisibilityContext
from feedengine.db.database import translate_store_error
from feedengine.models.follow import Friendship, UserFollow
from feedengine.models.user import User
from feedengine.schemas.enums import SortOrder
from feedengine.schemas.follow import FollowResult, RelationshipUser
from feedengine.utils.cursor import CursorPosition, decode_cursor, encode_cursor, keyset_clause

logger = logging.getLogger(__name__)


def _insert_if_absent(db: AsyncSession, model):
    """INSERT ... ON CONFLICT DO NOTHING for the session's dialect"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model.__table__).on_conflict_do_nothing()
    if dialect == "sqlite":
        return sqlite_insert(model.__table__).on_conflict_do_nothing()
    raise NotImplementedError(f"insert-if-absent is not available for dialect {dialect}")


async def _lock_users(db: AsyncSession, *user_ids: str) -> Set[str]:
    """Row-lock the given users in id order and return the ids that exist"""
    result = await db.execute(
        select(User.id)
        .where(User.id.in_(sorted(set(user_ids))))
        .order_by(User.id)
        .with_for_update()
    )
    return {row[0] for row in result.all()}


async def _adjust_counter(db: AsyncSession, user_ids, column, delta: int) -> None:
    await db.execute(
        update(User)
        .where(User.id.in_(list(user_ids)))
        .values({column: getattr(User, column) + delta})
        .execution_options(synchronize_session=False)
    )


async def is_following(db: AsyncSession, follower_id: str, followed_id: str) -> bool:
    result = await db.execute(
        select(UserFollow.follower_id).where(
            UserFollow.follower_id == follower_id,
            UserFollow.followed_id == followed_id
        )
    )
    return result.first() is not None


async def _set_mutual(db: AsyncSession, a: str, b: str, value: bool) -> None:
    await db.execute(
        update(UserFollow)
        .where(or_(
            and_(UserFollow.follower_id == a, UserFollow.followed_id == b),
            and_(UserFollow.follower_id == b, UserFollow.followed_id == a),
        ))
        .values(is_mutual=value)
        .execution_options(synchronize_session=False)
    )


async def follow_user(db: AsyncSession, follower_id: str, followed_id: str) -> FollowResult:
    """
    Make follower_id follow followed_id. Idempotent: repeating the call
    writes nothing and returns the same result.
    """
    follower_id, followed_id = str(follower_id), str(followed_id)
    if follower_id == followed_id:
        raise SelfFollowError()

    try:
        existing = await _lock_users(db, follower_id, followed_id)
        if followed_id not in existing or follower_id not in existing:
            raise NotFoundError("User not found", error_code=error_codes.USER_NOT_FOUND)

        now = datetime.utcnow()
        inserted = await db.execute(
            _insert_if_absent(db, UserFollow).values(
                follower_id=follower_id,
                followed_id=followed_id,
                is_mutual=False,
                created_at=now,
            )
        )
        if inserted.rowcount:
            await _adjust_counter(db, [follower_id], "following_count", 1)
            await _adjust_counter(db, [followed_id], "followers_count", 1)

        is_friend = False
        if await is_following(db, followed_id, follower_id):
            user_id_1, user_id_2 = Friendship.canonical_pair(follower_id, followed_id)
            created = await db.execute(
                _insert_if_absent(db, Friendship).values(
                    user_id_1=user_id_1,
                    user_id_2=user_id_2,
                    created_at=now,
                )
            )
            await _set_mutual(db, follower_id, followed_id, True)
            if created.rowcount:
                await _adjust_counter(db, [user_id_1, user_id_2], "friends_count", 1)
                logger.info(f"Friendship materialized between {user_id_1} and {user_id_2}")
            is_friend = True

        await db.commit()
    except FeedEngineError:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Follow {follower_id} -> {followed_id} failed: {str(e)}", exc_info=True)
        raise translate_store_error(e) from e

    return FollowResult(following=True, is_friend=is_friend)


async def unfollow_user(db: AsyncSession, follower_id: str, followed_id: str) -> FollowResult:
    """Remove the edge if present; an existing friendship is demolished in the same transaction."""
    follower_id, followed_id = str(follower_id), str(followed_id)
    if follower_id == followed_id:
        return FollowResult(following=False, is_friend=False)

    try:
        await _lock_users(db, follower_id, followed_id)

        removed = await db.execute(
            delete(UserFollow).where(
                UserFollow.follower_id == follower_id,
                UserFollow.followed_id == followed_id
            ).execution_options(synchronize_session=False)
        )
        if removed.rowcount:
            await _adjust_counter(db, [follower_id], "following_count", -1)
            await _adjust_counter(db, [followed_id], "followers_count", -1)

        user_id_1, user_id_2 = Friendship.canonical_pair(follower_id, followed_id)
        demolished = await db.execute(
            delete(Friendship).where(
                Friendship.user_id_1 == user_id_1,
                Friendship.user_id_2 == user_id_2
            ).execution_options(synchronize_session=False)
        )
        if demolished.rowcount:
            await _set_mutual(db, follower_id, followed_id, False)
            await _adjust_counter(db, [user_id_1, user_id_2], "friends_count", -1)
            logger.info(f"Friendship removed between {user_id_1} and {user_id_2}")

        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Unfollow {follower_id} -> {followed_id} failed: {str(e)}", exc_info=True)
        raise translate_store_error(e) from e

    return FollowResult(following=False, is_friend=False)


async def get_following_ids(db: AsyncSession, user_id: str) -> Set[str]:
    """Ids of users that user_id follows (served by the follower_id index)"""
    result = await db.execute(
        select(UserFollow.followed_id).where(UserFollow.follower_id == str(user_id))
    )
    return {row[0] for row in result.all()}


async def get_follower_ids(db: AsyncSession, user_id: str) -> Set[str]:
    """Ids of users following user_id (served by the followed_id index)"""
    result = await db.execute(
        select(UserFollow.follower_id).where(UserFollow.followed_id == str(user_id))
    )
    return {row[0] for row in result.all()}


async def get_friend_ids(db: AsyncSession, user_id: str) -> Set[str]:
    user_id = str(user_id)
    query = union_all(
        select(Friendship.user_id_2.label("friend_id")).where(Friendship.user_id_1 == user_id),
        select(Friendship.user_id_1.label("friend_id")).where(Friendship.user_id_2 == user_id),
    )
    result = await db.execute(query)
    return {row[0] for row in result.all()}


async def is_mutual(db: AsyncSession, a: str, b: str) -> bool:
    """Primary-key lookup on the friendship table"""
    a, b = str(a), str(b)
    if a == b:
        return False
    user_id_1, user_id_2 = Friendship.canonical_pair(a, b)
    result = await db.execute(
        select(Friendship.user_id_1).where(
            Friendship.user_id_1 == user_id_1,
            Friendship.user_id_2 == user_id_2
        )
    )
    return result.first() is not None


async def load_visibility_context(db: AsyncSession, viewer_id: str) -> VisibilityContext:
    """Prefetch the viewer's following and friend sets once per request"""
    following_ids = await get_following_ids(db, viewer_id)
    friend_ids = await get_friend_ids(db, viewer_id)
    return VisibilityContext(
        viewer_id=str(viewer_id),
        following_ids=frozenset(following_ids),
        friend_ids=frozenset(friend_ids),
    )


async def _relationship_page(
    db: AsyncSession,
    query,
    created_col,
    mutual_col,
    limit: int,
    cursor: Optional[str],
) -> Tuple[List[RelationshipUser], Optional[str], bool]:
    limit = max(1, min(limit, settings.MAX_PAGE_SIZE))
    if cursor is not None:
        position = decode_cursor(cursor, expected_sort=SortOrder.RECENT)
        query = query.where(keyset_clause(position, created_col, User.id))

    result = await db.execute(
        query.add_columns(created_col, mutual_col)
        .order_by(created_col.desc(), User.id.desc())
        .limit(limit + 1)
    )
    rows = result.all()
    has_more = len(rows) > limit
    rows = rows[:limit]

    users = [
        RelationshipUser(
            id=user.id,
            username=user.username,
            display_name=user.display_name,
            is_mutual=bool(mutual),
        )
        for user, _, mutual in rows
    ]
    next_cursor = None
    if has_more and rows:
        last_user, last_created, _ = rows[-1]
        next_cursor = encode_cursor(CursorPosition(
            sort=SortOrder.RECENT,
            created_at=last_created,
            id=last_user.id,
        ))
    return users, next_cursor, has_more


async def list_following(db: AsyncSession, user_id: str, limit: int = 20, cursor: Optional[str] = None):
    """Users followed by user_id, most recent follow first"""
    query = (
        select(User)
        .join(UserFollow, User.id == UserFollow.followed_id)
        .where(UserFollow.follower_id == str(user_id))
    )
    return await _relationship_page(db, query, UserFollow.created_at, UserFollow.is_mutual, limit, cursor)


async def list_followers(db: AsyncSession, user_id: str, limit: int = 20, cursor: Optional[str] = None):
    """Users following user_id, most recent follow first"""
    query = (
        select(User)
        .join(UserFollow, User.id == UserFollow.follower_id)
        .where(UserFollow.followed_id == str(user_id))
    )
    return await _relationship_page(db, query, UserFollow.created_at, UserFollow.is_mutual, limit, cursor)


async def list_friends(db: AsyncSession, user_id: str, limit: int = 20, cursor: Optional[str] = None):
    """Mutual followers of user_id, most recent friendship first"""
    user_id = str(user_id)
    query = (
        select(User)
        .join(Friendship, or_(
            and_(Friendship.user_id_1 == user_id, Friendship.user_id_2 == User.id),
            and_(Friendship.user_id_2 == user_id, Friendship.user_id_1 == User.id),
        ))
    )
    mutual = Friendship.user_id_1.is_not(None)
    return await _relationship_page(db, query, Friendship.created_at, mutual, limit, cursor)
