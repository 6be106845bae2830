"""Page slicing for listings."""
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

DEFAULT_PAGE_SIZE = 10
PAGE_SIZE_OPTIONS = (5, 10, 25, 50)


@dataclass(frozen=True)
class Page:
    page: int
    page_size: int
    total: int
    total_pages: int
    items: List[Any] = field(default_factory=list)
    start_index: int = 0
    end_index: int = 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


def total_pages_for(total: int, page_size: int) -> int:
    return max(1, math.ceil(total / page_size))


def clamp_page(page: int, total_pages: int) -> int:
    return min(max(1, page), max(1, total_pages))


def paginate(items: Sequence[Any], page: int, page_size: int) -> Page:
    """Slice one page out of items. Out-of-range pages are clamped, never rejected."""
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    total = len(items)
    pages = total_pages_for(total, page_size)
    page = clamp_page(page, pages)
    start = (page - 1) * page_size
    end = min(start + page_size, total)
    return Page(
        page=page,
        page_size=page_size,
        total=total,
        total_pages=pages,
        items=list(items[start:end]),
        start_index=start,
        end_index=end,
    )


def reposition(old_page: int, old_page_size: int, new_page_size: int) -> int:
    """Page that still shows the first item visible before a page size change."""
    first_visible = (max(1, old_page) - 1) * old_page_size + 1
    return max(1, math.ceil(first_visible / new_page_size))


class PaginationState:
    """
    Current page and page size of one listing.

    The stored page is re-clamped every time a page is computed, so when the
    collection shrinks (e.g. after a delete) the listing moves back to the
    last page that still exists instead of showing an empty one.
    """

    def __init__(self, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE,
                 page_size_options: Tuple[int, ...] = PAGE_SIZE_OPTIONS):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.page = max(1, page)
        self.page_size = page_size
        self.page_size_options = page_size_options
        self._total_pages: Optional[int] = None

    def apply(self, items: Sequence[Any]) -> Page:
        result = paginate(items, self.page, self.page_size)
        self.page = result.page
        self._total_pages = result.total_pages
        return result

    def set_page(self, page: int) -> int:
        # the upper bound is only known once a page has been computed
        if self._total_pages is None:
            self.page = max(1, page)
        else:
            self.page = clamp_page(page, self._total_pages)
        return self.page

    def set_page_size(self, page_size: int) -> int:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        if self.page_size_options and page_size not in self.page_size_options:
            raise ValueError(f"page_size must be one of {self.page_size_options}")
        self.page = reposition(self.page, self.page_size, page_size)
        self.page_size = page_size
        return self.page

    def reset(self) -> None:
        self.page = 1

    def first(self) -> int:
        return self.set_page(1)

    def last(self) -> int:
        return self.set_page(self._total_pages or 1)

    def next(self) -> int:
        return self.set_page(self.page + 1)

    def previous(self) -> int:
        return self.set_page(self.page - 1)
