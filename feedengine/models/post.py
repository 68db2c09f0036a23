"""
Post (content item) model.
Ordering for feeds is created_at desc with id desc as the tie-break, so the
(author_id, created_at, id) index backs every feed query.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Enum as SAEnum, Index, String
from sqlmodel import SQLModel, Field

from feedengine.schemas.enums import PostType, PostVisibility
from feedengine.schemas.post import MAX_TAG_LENGTH


class Post(SQLModel, table=True):
    __table_args__ = (
        Index("ix_post_author_created_id", "author_id", "created_at", "id"),
        Index("ix_post_created_id", "created_at", "id"),
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    author_id: str = Field(foreign_key="user.id", index=True)
    content: str = Field(..., max_length=5000)
    post_type: PostType = Field(
        sa_column=Column(
            SAEnum(PostType, values_callable=lambda enum_cls: [e.value for e in enum_cls], name="posttype"),
            nullable=False
        )
    )
    visibility: PostVisibility = Field(
        default=PostVisibility.PUBLIC,
        sa_column=Column(
            SAEnum(PostVisibility, values_callable=lambda enum_cls: [e.value for e in enum_cls], name="postvisibility"),
            nullable=False,
            index=True
        )
    )
    deleted: bool = Field(default=False, index=True)  # using for the soft delete
    deleted_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=False))

    # cached aggregates, used for ranking only
    likes_count: int = Field(default=0)
    comments_count: int = Field(default=0)
    reposts_count: int = Field(default=0)

    # timestamps are naive UTC
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime(timezone=False))
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_type=DateTime(timezone=False),
        sa_column_kwargs={"onupdate": datetime.utcnow}
    )


class PostTag(SQLModel, table=True):
    """Normalized tags (lowercase, no leading '#') attached to a post"""
    post_id: str = Field(foreign_key="post.id", primary_key=True)
    tag: str = Field(sa_column=Column(String(MAX_TAG_LENGTH), primary_key=True, index=True))
