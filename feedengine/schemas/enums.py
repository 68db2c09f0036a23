"""
Enumeration definitions for fixed options shared by models, schemas and the feed engine.
"""

from enum import Enum


class PostType(str, Enum):
    """Types of content posts users can create."""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    SONG = "song"


class PostVisibility(str, Enum):
    """
    Controls who can see the post.
    """
    PUBLIC = "public"  # Visible to all users
    FOLLOWERS = "followers"  # Only visible to followers of the author
    PRIVATE = "private"  # Only visible to friends (mutual followers) of the author


class CombineMode(str, Enum):
    """How predicate blocks of a feed definition are combined."""
    AND = "AND"
    OR = "OR"


class FilterOperator(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


class FilterBlockType(str, Enum):
    AUTHOR = "author"
    POST_TYPE = "post_type"
    TAG = "tag"
    DATE_RANGE = "date_range"
    ENGAGEMENT = "engagement"
    SORT = "sort"
    LIMIT = "limit"


class EngagementMetric(str, Enum):
    LIKES = "likes"
    COMMENTS = "comments"
    REPOSTS = "reposts"


class SortOrder(str, Enum):
    """
    RECENT: created_at desc, id desc.
    POPULAR: likes_count desc, then created_at desc, id desc.
    """
    RECENT = "recent"
    POPULAR = "popular"
