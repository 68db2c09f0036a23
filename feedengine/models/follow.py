from datetime import datetime
from typing import Tuple

from sqlalchemy import CheckConstraint, DateTime, Index
from sqlmodel import SQLModel, Field


class UserFollow(SQLModel, table=True):
    """Directed follow edge: follower_id follows followed_id"""
    __table_args__ = (
        CheckConstraint("follower_id <> followed_id", name="ck_userfollow_no_self_follow"),
        Index("ix_userfollow_follower_created", "follower_id", "created_at"),
        Index("ix_userfollow_followed_created", "followed_id", "created_at"),
    )

    follower_id: str = Field(
        foreign_key="user.id",
        primary_key=True,
        index=True  # For faster following queries
    )
    followed_id: str = Field(
        foreign_key="user.id",
        primary_key=True,
        index=True  # For faster follower queries
    )
    # True while the reverse edge also exists
    is_mutual: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime(timezone=False))


class Friendship(SQLModel, table=True):
    """
    Symmetric friendship, materialized as one canonical row per pair
    with user_id_1 < user_id_2. Only written by the follow/unfollow
    transactions in crud.follow.
    """
    __table_args__ = (
        CheckConstraint("user_id_1 < user_id_2", name="ck_friendship_canonical_order"),
    )

    user_id_1: str = Field(foreign_key="user.id", primary_key=True, index=True)
    user_id_2: str = Field(foreign_key="user.id", primary_key=True, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime(timezone=False))

    @staticmethod
    def canonical_pair(a: str, b: str) -> Tuple[str, str]:
        return (a, b) if a < b else (b, a)
