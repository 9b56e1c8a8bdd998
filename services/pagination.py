from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Generic, List, Sequence, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    current_page: int
    page_size: int
    total_pages: int
    total_records: int


def paginate(items: Sequence[T], page: int, page_size: int) -> Page[T]:
    """Slice an already ordered sequence; pages are 1-based."""
    if page < 1:
        raise ValueError("page must be >= 1")
    if page_size < 1:
        raise ValueError("page_size must be >= 1")

    total = len(items)
    start = (page - 1) * page_size
    return Page(
        items=list(items[start:start + page_size]),
        current_page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
        total_records=total,
    )
