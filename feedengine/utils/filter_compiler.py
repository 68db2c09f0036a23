"""
Filter pipeline compiler.

Turns the ordered block list of a feed definition into a CompiledPipeline:
a predicate value object, a sort spec and an optional page-size cap. The
compiler is pure; translating the predicate into SQL happens in crud.post.

Folding rules
- AND: include sets on the same field intersect, exclude sets union and are
  subtracted from the include set; include ranges intersect; an empty result
  compiles to an always-false predicate.
- OR: every predicate block is one disjunct. An include block with no
  values is a false disjunct and is dropped; if every disjunct is false the
  predicate is always false.
- An include block with an empty operand set is never an error: the feed
  legitimately returns nothing.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from feedengine.core.config import settings
from feedengine.core.exceptions import InvalidFilterError, UnsupportedFilterError
from feedengine.schemas.enums import CombineMode, FilterBlockType, FilterOperator, SortOrder
from feedengine.schemas.feed import (
    AuthorFilter,
    DateRangeFilter,
    EngagementFilter,
    FilterBlock,
    LimitBlock,
    PostTypeFilter,
    SortBlock,
    TagFilter,
    CONTROL_BLOCKS,
    PREDICATE_BLOCKS,
)

AUTHOR = "author"
POST_TYPE = "post_type"
TAG = "tag"
CREATED_AT = "created_at"

SET_FIELDS = (AUTHOR, POST_TYPE, TAG)

_block_adapter = TypeAdapter(FilterBlock)
_known_block_types = {item.value for item in FilterBlockType}


@dataclass(frozen=True)
class SetCondition:
    """field value is (or, when negated, is not) one of `values`"""
    field: str
    values: FrozenSet[str]
    negated: bool = False


@dataclass(frozen=True)
class RangeCondition:
    """lower <= field value <= upper, open bounds are None"""
    field: str
    lower: Optional[Union[datetime, int]] = None
    upper: Optional[Union[datetime, int]] = None
    negated: bool = False


Condition = Union[SetCondition, RangeCondition]


@dataclass(frozen=True)
class Predicate:
    """
    AND: every condition holds. OR: at least one condition holds.
    No conditions means no restriction, unless always_false is set.
    """
    mode: CombineMode = CombineMode.AND
    conditions: Tuple[Condition, ...] = ()
    always_false: bool = False

    @property
    def is_unrestricted(self) -> bool:
        return not self.always_false and not self.conditions


@dataclass(frozen=True)
class SortSpec:
    order: SortOrder = SortOrder.RECENT


@dataclass(frozen=True)
class CompiledPipeline:
    predicate: Predicate = field(default_factory=Predicate)
    sort: SortSpec = field(default_factory=SortSpec)
    limit: Optional[int] = None
    # Author sets the feed builder uses to scope candidate authors
    included_authors: Optional[FrozenSet[str]] = None
    excluded_authors: FrozenSet[str] = frozenset()
    referenced_authors: FrozenSet[str] = frozenset()

    def effective_page_size(self, requested: int) -> int:
        """A limit block caps the caller's page size but never raises it."""
        if self.limit is None:
            return requested
        return min(requested, self.limit)


DEFAULT_PIPELINE = CompiledPipeline()


def parse_blocks(raw_blocks: Iterable[Any]) -> List[FilterBlock]:
    """
    Validate raw block dictionaries into typed blocks.
    Unknown block types raise UnsupportedFilterError, malformed known
    blocks raise InvalidFilterError.
    """
    if raw_blocks is None:
        return []
    if isinstance(raw_blocks, (str, bytes, dict)):
        raise InvalidFilterError("Filter blocks must be a list")

    raw_blocks = list(raw_blocks)
    if len(raw_blocks) > settings.MAX_FILTER_BLOCKS:
        raise InvalidFilterError(f"A feed may have at most {settings.MAX_FILTER_BLOCKS} blocks")

    blocks = []
    for position, raw in enumerate(raw_blocks):
        if isinstance(raw, PREDICATE_BLOCKS + CONTROL_BLOCKS):
            blocks.append(raw)
            continue
        if not isinstance(raw, dict):
            raise InvalidFilterError(f"Block {position} must be an object")

        block_type = raw.get("type")
        if block_type not in _known_block_types:
            raise UnsupportedFilterError(f"Unsupported filter block type {block_type!r} at position {position}")

        try:
            blocks.append(_block_adapter.validate_python(raw))
        except PydanticValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            location = ".".join(str(part) for part in first.get("loc", ()) if part != block_type)
            message = first.get("msg", "invalid block")
            raise InvalidFilterError(
                f"Invalid {block_type} block at position {position}: {location + ': ' if location else ''}{message}"
            )
    return blocks


def serialize_blocks(blocks: Iterable[FilterBlock]) -> List[Dict[str, Any]]:
    """JSON-ready form stored on FeedDefinition.blocks"""
    return [block.model_dump(mode="json", exclude_none=True) for block in blocks]


def compile_pipeline(blocks: Iterable[FilterBlock], combine_mode: CombineMode = CombineMode.AND) -> CompiledPipeline:
    blocks = list(blocks)
    combine_mode = CombineMode(combine_mode)

    predicate_blocks = [block for block in blocks if isinstance(block, PREDICATE_BLOCKS)]
    sort_blocks = [block for block in blocks if isinstance(block, SortBlock)]
    limit_blocks = [block for block in blocks if isinstance(block, LimitBlock)]

    # Ordering never narrows results, so the last sort block wins
    sort = SortSpec(order=sort_blocks[-1].order) if sort_blocks else SortSpec()
    limit = min(block.count for block in limit_blocks) if limit_blocks else None

    if combine_mode == CombineMode.OR:
        predicate = _fold_or(predicate_blocks)
    else:
        predicate = _fold_and(predicate_blocks)

    included_authors, excluded_authors, referenced_authors = _author_scope(predicate)
    return CompiledPipeline(
        predicate=predicate,
        sort=sort,
        limit=limit,
        included_authors=included_authors,
        excluded_authors=excluded_authors,
        referenced_authors=referenced_authors,
    )


def _block_condition(block) -> Condition:
    negated = block.operator == FilterOperator.EXCLUDE
    if isinstance(block, AuthorFilter):
        return SetCondition(AUTHOR, frozenset(block.values), negated)
    if isinstance(block, PostTypeFilter):
        return SetCondition(POST_TYPE, frozenset(value.value for value in block.values), negated)
    if isinstance(block, TagFilter):
        return SetCondition(TAG, frozenset(block.values), negated)
    if isinstance(block, DateRangeFilter):
        return RangeCondition(CREATED_AT, block.start, block.end, negated)
    if isinstance(block, EngagementFilter):
        return RangeCondition(block.metric.value, block.min_value, block.max_value, negated)
    raise UnsupportedFilterError(f"Unsupported filter block {type(block).__name__}")


def _fold_and(blocks) -> Predicate:
    includes: Dict[str, FrozenSet[str]] = {}
    excludes: Dict[str, FrozenSet[str]] = {}
    ranges: Dict[str, Tuple[Any, Any]] = {}
    negated_ranges: List[RangeCondition] = []

    for block in blocks:
        condition = _block_condition(block)
        if isinstance(condition, SetCondition):
            if condition.negated:
                excludes[condition.field] = excludes.get(condition.field, frozenset()) | condition.values
            elif condition.field in includes:
                includes[condition.field] = includes[condition.field] & condition.values
            else:
                includes[condition.field] = condition.values
        elif condition.negated:
            negated_ranges.append(condition)
        else:
            lower, upper = ranges.get(condition.field, (None, None))
            ranges[condition.field] = (
                _max_bound(lower, condition.lower),
                _min_bound(upper, condition.upper),
            )

    conditions: List[Condition] = []
    for name in SET_FIELDS:
        excluded = excludes.get(name, frozenset())
        if name in includes:
            remaining = includes[name] - excluded
            if not remaining:
                return Predicate(mode=CombineMode.AND, always_false=True)
            conditions.append(SetCondition(name, remaining))
        elif excluded:
            conditions.append(SetCondition(name, excluded, negated=True))

    for name in sorted(ranges):
        lower, upper = ranges[name]
        if lower is not None and upper is not None and lower > upper:
            return Predicate(mode=CombineMode.AND, always_false=True)
        conditions.append(RangeCondition(name, lower, upper))

    conditions.extend(negated_ranges)
    return Predicate(mode=CombineMode.AND, conditions=tuple(conditions))


def _fold_or(blocks) -> Predicate:
    if not blocks:
        return Predicate(mode=CombineMode.OR)

    disjuncts: List[Condition] = []
    for block in blocks:
        condition = _block_condition(block)
        if isinstance(condition, SetCondition) and not condition.values:
            if condition.negated:
                # "not in {}" holds for every row, so the whole disjunction does
                return Predicate(mode=CombineMode.OR)
            continue
        if condition not in disjuncts:
            disjuncts.append(condition)

    if not disjuncts:
        return Predicate(mode=CombineMode.OR, always_false=True)
    return Predicate(mode=CombineMode.OR, conditions=tuple(disjuncts))


def _author_scope(predicate: Predicate):
    included: Optional[FrozenSet[str]] = None
    excluded: FrozenSet[str] = frozenset()
    referenced: FrozenSet[str] = frozenset()

    if predicate.always_false:
        return frozenset(), excluded, referenced

    for condition in predicate.conditions:
        if not isinstance(condition, SetCondition) or condition.field != AUTHOR:
            continue
        if predicate.mode == CombineMode.AND:
            if condition.negated:
                excluded = condition.values
            else:
                included = condition.values
        elif not condition.negated:
            referenced = referenced | condition.values
    return included, excluded, referenced


def _max_bound(current, candidate):
    if current is None:
        return candidate
    if candidate is None:
        return current
    return max(current, candidate)


def _min_bound(current, candidate):
    if current is None:
        return candidate
    if candidate is None:
        return current
    return min(current, candidate)
