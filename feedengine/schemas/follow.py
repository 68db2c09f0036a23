from pydantic import BaseModel
from typing import List, Optional


class FollowResult(BaseModel):
    following: bool
    is_friend: bool = False


class MutualStatus(BaseModel):
    user_id: str
    other_user_id: str
    is_mutual: bool


class RelationshipUser(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    is_mutual: bool


class RelationshipPage(BaseModel):
    users: List[RelationshipUser]
    next_cursor: Optional[str] = None
    has_more: bool = False
