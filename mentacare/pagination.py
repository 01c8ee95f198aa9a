from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from mentacare.db import DOC_ID, Collection

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


@dataclass
class Page:
    items: List[Dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    cursor: Optional[str] = None


def clamp_page_size(raw: Any, default: int) -> int:
    try:
        size = int(raw)
    except (TypeError, ValueError):
        return default
    if size <= 0:
        return default
    return min(size, MAX_PAGE_SIZE)


def fetch_page(
    collection: Collection,
    *,
    filters: Optional[Dict[str, Any]],
    order_field: str,
    direction: str = "desc",
    page_size: int,
    cursor: Optional[str] = None,
    columns: Optional[Sequence[str]] = None,
) -> Page:
    """
    Fetch one page ordered by `order_field`, resuming after `cursor`.

    Asks for one extra row to learn whether another page exists. A cursor that
    no longer resolves to a record restarts from the first page.
    """
    start_after = None
    if cursor:
        start_after = collection.get(cursor)
        if start_after is None:
            logger.info("cursor %s/%s no longer exists; restarting pagination", collection.name, cursor)

    rows = collection.select(
        filters=filters,
        columns=columns,
        order=(order_field, direction),
        limit=page_size + 1,
        start_after=start_after,
    )
    has_more = len(rows) > page_size
    if has_more:
        rows = rows[:page_size]
    return Page(items=rows, has_more=has_more, cursor=rows[-1][DOC_ID] if rows else None)


def offset_for(page_number: Any, page_size: int) -> int:
    try:
        page = int(page_number)
    except (TypeError, ValueError):
        page = 1
    return (max(page, 1) - 1) * page_size
