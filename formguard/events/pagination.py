"""Paginator and the timeline view state.

ViewState is the value object carrying filters and page position between
requests. Changing the filters always returns to the first page, and
build_view() clamps the page index against the filtered count, so a stale
out-of-range page is never served.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from formguard.constants import DEFAULT_PAGE_SIZE
from formguard.events.filters import EventFilters, apply_filters
from formguard.events.models import SecurityEvent


@dataclass(frozen=True)
class Page:
    items: list[SecurityEvent]
    page_index: int
    """Zero-based index of the page actually returned (after clamping)."""
    page_size: int
    total_pages: int
    """max(1, ceil(total_count / page_size)); 1 for an empty set."""
    total_count: int


def total_pages(count: int, page_size: int) -> int:
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")
    return max(1, math.ceil(count / page_size))


def clamp_page_index(page_index: int, count: int, page_size: int) -> int:
    """Bring page_index into [0, total_pages - 1]."""
    return max(0, min(page_index, total_pages(count, page_size) - 1))


def paginate(events: Sequence[SecurityEvent], page_index: int, page_size: int) -> Page:
    """Slice one page out of an already filtered and sorted event list.

    Raises:
        ValueError: page_size < 1.
    """
    count = len(events)
    pages = total_pages(count, page_size)
    index = clamp_page_index(page_index, count, page_size)
    start = index * page_size
    return Page(
        items=list(events[start:start + page_size]),
        page_index=index,
        page_size=page_size,
        total_pages=pages,
        total_count=count,
    )


# ─── View state ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ViewState:
    """Filters plus page position for one timeline view."""

    filters: EventFilters = field(default_factory=EventFilters)
    page_index: int = 0
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {self.page_size}")
        if self.page_index < 0:
            object.__setattr__(self, "page_index", 0)

    def with_filters(self, filters: EventFilters) -> "ViewState":
        """New state with the given filters; resets to page 0 when they change."""
        if filters == self.filters:
            return self
        return replace(self, filters=filters, page_index=0)

    def with_page(self, page_index: int) -> "ViewState":
        return replace(self, page_index=page_index)


@dataclass(frozen=True)
class TimelineView:
    page: Page
    state: ViewState
    """Effective state: page_index reflects any clamping that was applied."""
    overall_count: int
    """Number of events in the timeline before filtering."""

    @property
    def events(self) -> list[SecurityEvent]:
        return self.page.items

    @property
    def total_count(self) -> int:
        return self.page.total_count


def build_view(timeline: Sequence[SecurityEvent], state: ViewState) -> TimelineView:
    """Filter and paginate a merged timeline for the given view state."""
    filtered = apply_filters(timeline, state.filters)
    page = paginate(filtered, state.page_index, state.page_size)
    return TimelineView(
        page=page,
        state=state.with_page(page.page_index),
        overall_count=len(timeline),
    )
