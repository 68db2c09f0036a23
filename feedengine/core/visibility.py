"""
Visibility authorization for content items.

Two forms that must agree on every input:
- can_view / VisibilityContext.can_view: in-process predicate used for
  single-post lookups and to re-check feed rows.
- visibility_clause: the same rule as a SQLAlchemy expression for bulk
  feed queries. Follow and friendship membership are read through
  subqueries on userfollow and friendship, so no id list is bound.

Neither form performs I/O.
"""

from dataclasses import dataclass, field
from typing import AbstractSet, Iterable, List, TypeVar

from sqlalchemy import and_, false, or_, select
from sqlalchemy.sql.elements import ColumnElement

from feedengine.models.follow import Friendship, UserFollow
from feedengine.models.post import Post
from feedengine.schemas.enums import PostVisibility

T = TypeVar("T")


def can_view(viewer_id: str, item, is_following_author: bool, is_friend_with_author: bool) -> bool:
    """Decide whether viewer_id may see item (anything with author_id, visibility, deleted)."""
    if item.deleted:
        return False
    if viewer_id == item.author_id:
        return True

    visibility = PostVisibility(item.visibility)
    if visibility == PostVisibility.PUBLIC:
        return True
    if visibility == PostVisibility.FOLLOWERS:
        return is_following_author
    if visibility == PostVisibility.PRIVATE:
        return is_friend_with_author
    return False


@dataclass(frozen=True)
class VisibilityContext:
    """The viewer's graph neighbourhood, fetched once per request."""
    viewer_id: str
    following_ids: AbstractSet[str] = field(default_factory=frozenset)
    friend_ids: AbstractSet[str] = field(default_factory=frozenset)

    def can_view(self, item) -> bool:
        return can_view(
            self.viewer_id,
            item,
            is_following_author=item.author_id in self.following_ids,
            is_friend_with_author=item.author_id in self.friend_ids,
        )

    def filter_visible(self, items: Iterable[T]) -> List[T]:
        """Bulk in-process form; keeps input order."""
        return [item for item in items if self.can_view(item)]


def following_subquery(viewer_id: str):
    return select(UserFollow.followed_id).where(UserFollow.follower_id == viewer_id)


def friend_clause(viewer_id: str) -> ColumnElement:
    # friendship rows are canonical, so the viewer may sit on either side
    return or_(
        Post.author_id.in_(select(Friendship.user_id_2).where(Friendship.user_id_1 == viewer_id)),
        Post.author_id.in_(select(Friendship.user_id_1).where(Friendship.user_id_2 == viewer_id)),
    )


def visibility_clause(viewer_id: str) -> ColumnElement:
    """Bulk query form of can_view over the Post table."""
    return and_(
        Post.deleted == false(),
        or_(
            Post.author_id == viewer_id,
            Post.visibility == PostVisibility.PUBLIC,
            and_(
                Post.visibility == PostVisibility.FOLLOWERS,
                Post.author_id.in_(following_subquery(viewer_id))
            ),
            and_(
                Post.visibility == PostVisibility.PRIVATE,
                friend_clause(viewer_id)
            ),
        )
    )
