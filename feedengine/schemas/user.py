from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    username: str = Field(..., min_length=2, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    display_name: Optional[str] = Field(None, max_length=100)


class UserPublic(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    followers_count: int = 0
    following_count: int = 0
    friends_count: int = 0
    created_at: datetime

    model_config = {"from_attributes": True}
