import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field


def generate_uuid() -> str:
    return str(uuid.uuid4())


class UserBase(SQLModel):
    """Base fields shared across user schemas"""
    username: str = Field(..., min_length=2, max_length=50)
    display_name: Optional[str] = Field(default=None, max_length=100)


class User(UserBase, table=True):
    """
    A member of the social graph.
    The counters are cached aggregates; correctness checks always read the
    userfollow and friendship tables.
    """
    id: str = Field(default_factory=generate_uuid, primary_key=True)
    username: str = Field(..., min_length=2, max_length=50, unique=True, index=True)

    followers_count: int = Field(default=0)
    following_count: int = Field(default=0)
    friends_count: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime(timezone=False))
