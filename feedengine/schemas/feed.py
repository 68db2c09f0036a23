"""
Pydantic schemas for feed definitions, filter blocks and feed pages.

Filter blocks form a closed tagged union discriminated on `type`; see
utils.filter_compiler for how they are parsed and compiled.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from feedengine.schemas.enums import (
    CombineMode,
    EngagementMetric,
    FilterOperator,
    PostType,
    SortOrder,
)
from feedengine.schemas.post import MAX_TAG_LENGTH, PostRead, normalize_tag


class _BlockBase(BaseModel):
    model_config = {"extra": "forbid"}


class AuthorFilter(_BlockBase):
    type: Literal["author"] = "author"
    operator: FilterOperator = FilterOperator.INCLUDE
    values: List[str] = Field(default_factory=list)

    @field_validator("values")
    @classmethod
    def strip_ids(cls, v):
        return [item.strip() for item in v if item and item.strip()]


class PostTypeFilter(_BlockBase):
    type: Literal["post_type"] = "post_type"
    operator: FilterOperator = FilterOperator.INCLUDE
    values: List[PostType] = Field(default_factory=list)


class TagFilter(_BlockBase):
    type: Literal["tag"] = "tag"
    operator: FilterOperator = FilterOperator.INCLUDE
    values: List[str] = Field(default_factory=list)

    @field_validator("values")
    @classmethod
    def normalize_tags(cls, v):
        tags = [normalize_tag(tag) for tag in v if normalize_tag(tag)]
        for tag in tags:
            if len(tag) > MAX_TAG_LENGTH:
                raise ValueError(f"Tag values must be at most {MAX_TAG_LENGTH} characters")
        return tags


class DateRangeFilter(_BlockBase):
    type: Literal["date_range"] = "date_range"
    operator: FilterOperator = FilterOperator.INCLUDE
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def to_naive_utc(cls, v):
        # stored timestamps are naive UTC
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @model_validator(mode="after")
    def check_bounds(self):
        if self.start is None and self.end is None:
            raise ValueError("date_range needs at least one of start or end")
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("date_range start must not be after end")
        return self


class EngagementFilter(_BlockBase):
    type: Literal["engagement"] = "engagement"
    operator: FilterOperator = FilterOperator.INCLUDE
    metric: EngagementMetric = EngagementMetric.LIKES
    min_value: Optional[int] = Field(default=None, ge=0)
    max_value: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min_value is None and self.max_value is None:
            raise ValueError("engagement needs at least one of min_value or max_value")
        if self.min_value is not None and self.max_value is not None and self.min_value > self.max_value:
            raise ValueError("engagement min_value must not exceed max_value")
        return self


class SortBlock(_BlockBase):
    type: Literal["sort"] = "sort"
    order: SortOrder = SortOrder.RECENT


class LimitBlock(_BlockBase):
    type: Literal["limit"] = "limit"
    count: int = Field(..., ge=1)


FilterBlock = Annotated[
    Union[
        AuthorFilter,
        PostTypeFilter,
        TagFilter,
        DateRangeFilter,
        EngagementFilter,
        SortBlock,
        LimitBlock,
    ],
    Field(discriminator="type"),
]

PREDICATE_BLOCKS = (AuthorFilter, PostTypeFilter, TagFilter, DateRangeFilter, EngagementFilter)
CONTROL_BLOCKS = (SortBlock, LimitBlock)


class FeedDefinitionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    blocks: List[Dict[str, Any]] = Field(default_factory=list)
    combine_mode: CombineMode = CombineMode.AND
    is_default: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class FeedDefinitionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    blocks: Optional[List[Dict[str, Any]]] = None
    combine_mode: Optional[CombineMode] = None
    is_default: Optional[bool] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def require_one_field(self):
        if all(value is None for value in (self.name, self.blocks, self.combine_mode, self.is_default)):
            raise ValueError("At least one field (name, blocks, combine_mode or is_default) must be provided")
        return self


class FeedDefinitionRead(BaseModel):
    id: str
    owner_id: str
    name: str
    blocks: List[Dict[str, Any]]
    combine_mode: CombineMode
    is_default: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class FeedPageResponse(BaseModel):
    items: List[PostRead]
    next_cursor: Optional[str] = None
    has_more: bool = False
