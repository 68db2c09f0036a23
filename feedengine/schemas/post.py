"""
Pydantic schemas for post data validation and serialization.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from feedengine.schemas.enums import PostType, PostVisibility

# matches the width of posttag.tag
MAX_TAG_LENGTH = 100


def normalize_tag(tag: str) -> str:
    return tag.strip().lstrip("#").lower() if tag else ""


class PostCreate(BaseModel):
    """Schema for post creation requests"""
    content: str = Field(..., min_length=1, max_length=5000)
    post_type: PostType = PostType.TEXT
    visibility: PostVisibility = PostVisibility.PUBLIC
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v):
        if len(v) > 10:
            raise ValueError("Maximum 10 tags allowed")
        for tag in v:
            if len(normalize_tag(tag)) > MAX_TAG_LENGTH:
                raise ValueError(f"Tags must be at most {MAX_TAG_LENGTH} characters")
        return v


class PostRead(BaseModel):
    id: str
    author_id: str
    content: str
    post_type: PostType
    visibility: PostVisibility
    tags: List[str] = Field(default_factory=list)
    likes_count: int = 0
    comments_count: int = 0
    reposts_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
