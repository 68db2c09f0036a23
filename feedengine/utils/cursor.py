"""
Opaque keyset cursors.

A cursor captures the sort key of the last item of a page so the next page
starts strictly after it. Tokens are url-safe base64 of a compact JSON
document; a token that does not decode cleanly is rejected, never treated
as "start from page one".
"""

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from feedengine.core.exceptions import InvalidCursorError
from feedengine.schemas.enums import SortOrder

MAX_CURSOR_LENGTH = 512


@dataclass(frozen=True)
class CursorPosition:
    sort: SortOrder
    created_at: datetime
    id: str
    rank: Optional[int] = None


def encode_cursor(position: CursorPosition) -> str:
    payload = {
        "s": position.sort.value,
        "t": position.created_at.isoformat(),
        "id": position.id,
    }
    if position.sort == SortOrder.POPULAR:
        payload["r"] = position.rank or 0
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(token: str, expected_sort: Optional[SortOrder] = None) -> CursorPosition:
    """Decode a token produced by encode_cursor; raises InvalidCursorError otherwise."""
    if not isinstance(token, str) or not token.strip() or len(token) > MAX_CURSOR_LENGTH:
        raise InvalidCursorError()

    try:
        padded = token.strip() + "=" * (-len(token.strip()) % 4)
        raw = base64.b64decode(padded, altchars=b"-_", validate=True)
        payload = json.loads(raw.decode("utf-8"))
        sort = SortOrder(payload["s"])
        created_at = _parse_timestamp(payload["t"])
        item_id = payload["id"]
        rank = payload.get("r")
    except (binascii.Error, ValueError, TypeError, KeyError, AttributeError):
        raise InvalidCursorError()

    if not isinstance(item_id, str) or not item_id:
        raise InvalidCursorError()
    if sort == SortOrder.POPULAR and (not isinstance(rank, int) or isinstance(rank, bool)):
        raise InvalidCursorError()
    if expected_sort is not None and sort != expected_sort:
        raise InvalidCursorError("Cursor does not belong to this feed ordering")

    return CursorPosition(
        sort=sort,
        created_at=created_at,
        id=item_id,
        rank=rank if sort == SortOrder.POPULAR else None,
    )


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    # stored timestamps are naive UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def keyset_clause(
    position: CursorPosition,
    created_at_col,
    id_col,
    rank_col=None,
) -> ColumnElement:
    """Rows strictly after `position` in descending (rank,) created_at, id order."""
    after_time = or_(
        created_at_col < position.created_at,
        and_(created_at_col == position.created_at, id_col < position.id)
    )
    if position.sort == SortOrder.POPULAR:
        if rank_col is None:
            raise ValueError("rank column required for popular ordering")
        return or_(
            rank_col < position.rank,
            and_(rank_col == position.rank, after_time)
        )
    return after_time
