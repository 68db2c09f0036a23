import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import Column, DateTime, Index, JSON, String, text
from sqlmodel import SQLModel, Field

from feedengine.schemas.enums import CombineMode


class FeedDefinition(SQLModel, table=True):
    """
    A user-authored filter pipeline. `blocks` holds the normalized block list
    produced by utils.filter_compiler.parse_blocks; an empty list is the
    default following timeline.
    """
    __table_args__ = (
        # names are unique per owner regardless of case
        Index("uq_feeddefinition_owner_lower_name", "owner_id", text("lower(name)"), unique=True),
        # at most one default feed per owner
        Index(
            "uq_feeddefinition_owner_default",
            "owner_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(foreign_key="user.id", index=True)
    name: str = Field(..., max_length=100)
    blocks: List[Dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False)
    )
    combine_mode: CombineMode = Field(
        default=CombineMode.AND,
        sa_column=Column(String(3), nullable=False, default=CombineMode.AND.value)
    )
    is_default: bool = Field(default=False)

    # timestamps are naive UTC
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime(timezone=False))
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_type=DateTime(timezone=False),
        sa_column_kwargs={"onupdate": datetime.utcnow}
    )
