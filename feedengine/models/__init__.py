"""
Models package initialization
"""

from .user import User
from .follow import UserFollow, Friendship
from .post import Post, PostTag
from .feed_definition import FeedDefinition

__all__ = [
    "User", "UserFollow", "Friendship", "Post", "PostTag", "FeedDefinition"
]
