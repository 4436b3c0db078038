"""Generic search, date-range filter and pagination for every list screen.

Each role's list (pending reviews, history tabs, admin rosters) is a
``ListView`` configured with accessors for the record type it shows; the
filtering and paging rules live here once.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .models import Actor, TravelOrder

T = TypeVar("T")

PAGE_SIZE_OPTIONS: tuple[int, ...] = (5, 10, 25, 50)
DEFAULT_PAGE_SIZE = 10


class EmptyState(str, Enum):
    """Why a page has no rows."""

    NO_RECORDS = "no_records"
    NO_MATCHES = "no_matches"


class ListQuery(BaseModel):
    """Search, filters and paging for one list screen.

    Queries are immutable. The ``with_*`` methods return a new query and reset
    to the first page whenever the result set itself changes.
    """

    search: str = Field(default="", description="Case-insensitive search term")
    date_from: date | None = Field(default=None, description="Inclusive range start")
    date_to: date | None = Field(default=None, description="Inclusive range end")
    status: str | None = Field(default=None, description="Status filter, if any")
    page: int = Field(default=1, ge=1, description="1-based page number")
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, description="Rows per page")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _ordered_range(self) -> ListQuery:
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to must not be earlier than date_from")
        return self

    @property
    def is_filtered(self) -> bool:
        return bool(self.search.strip() or self.date_from or self.date_to or self.status)

    def _reset(self, **changes: Any) -> ListQuery:
        current = {name: getattr(self, name) for name in changes}
        if current == changes:
            return self
        return self.model_validate({**self.model_dump(), **changes, "page": 1})

    def with_search(self, term: str | None) -> ListQuery:
        return self._reset(search=term or "")

    def with_date_range(self, date_from: date | None, date_to: date | None) -> ListQuery:
        return self._reset(date_from=date_from, date_to=date_to)

    def with_status(self, status: str | None) -> ListQuery:
        return self._reset(status=status or None)

    def with_page_size(self, page_size: int) -> ListQuery:
        return self._reset(page_size=page_size)

    def with_page(self, page: int) -> ListQuery:
        return self.model_copy(update={"page": max(1, page)})

    def cleared(self) -> ListQuery:
        """Drop every filter, keeping the page size."""

        return ListQuery(page_size=self.page_size)

    def to_params(self) -> dict[str, str | int]:
        """Render the query as list endpoint parameters."""

        params: dict[str, str | int] = {"page": self.page, "per_page": self.page_size}
        if self.search.strip():
            params["search"] = self.search.strip()
        if self.status:
            params["status"] = self.status
        if self.date_from:
            params["date_from"] = self.date_from.isoformat()
        if self.date_to:
            params["date_to"] = self.date_to.isoformat()
        return params


def page_numbers(current: int, last: int, *, siblings: int = 1) -> list[int | None]:
    """Page links around the current page; ``None`` marks an ellipsis gap.

    >>> page_numbers(5, 10)
    [1, None, 4, 5, 6, None, 10]
    """

    if last <= 1:
        return [1]
    current = min(max(current, 1), last)
    wanted = {1, last, *range(current - siblings, current + siblings + 1)}
    pages = sorted(p for p in wanted if 1 <= p <= last)

    strip: list[int | None] = []
    previous = 0
    for number in pages:
        if number - previous == 2:
            strip.append(previous + 1)
        elif number - previous > 2:
            strip.append(None)
        strip.append(number)
        previous = number
    return strip


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a filtered result set."""

    items: list[T]
    total: int
    page: int
    page_size: int
    empty_state: EmptyState | None = None

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))

    @property
    def start_index(self) -> int:
        """1-based index of the first row shown, 0 when empty."""

        if not self.items:
            return 0
        return (self.page - 1) * self.page_size + 1

    @property
    def end_index(self) -> int:
        if not self.items:
            return 0
        return self.start_index + len(self.items) - 1

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.last_page

    @property
    def summary(self) -> str:
        if not self.items:
            return f"Showing 0 of {self.total}"
        return f"Showing {self.start_index}-{self.end_index} of {self.total}"

    def page_numbers(self) -> list[int | None]:
        return page_numbers(self.page, self.last_page)

    @classmethod
    def from_api(
        cls,
        items: Sequence[T],
        pagination: Mapping[str, Any] | None,
        query: ListQuery,
    ) -> Page[T]:
        """Wrap a server-paginated list response.

        The page number is clamped to the last page the total allows, so a
        page past the end never renders as an empty page of a non-empty list.
        """

        pagination = pagination or {}
        total = int(pagination.get("total", len(items)))
        page_size = max(1, int(pagination.get("per_page", query.page_size)))
        last_page = max(1, math.ceil(total / page_size))
        page = min(max(1, int(pagination.get("current_page", query.page))), last_page)
        empty_state = None
        if total == 0:
            empty_state = EmptyState.NO_MATCHES if query.is_filtered else EmptyState.NO_RECORDS
        return cls(
            items=list(items),
            total=total,
            page=page,
            page_size=page_size,
            empty_state=empty_state,
        )


TextAccessor = Callable[[T], str | None]
RangeAccessor = Callable[[T], tuple[date | None, date | None]]


def _status_text(value: object) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value)).lower()


@dataclass(frozen=True)
class ListView(Generic[T]):
    """Filter and paginate records of one type through its accessors."""

    text_fields: tuple[TextAccessor, ...]
    date_range: RangeAccessor | None = None
    status_of: Callable[[T], object] | None = None
    sort_key: Callable[[T], Any] | None = None
    descending: bool = False

    def _matches_search(self, record: T, term: str) -> bool:
        for accessor in self.text_fields:
            value = accessor(record)
            if value and term in value.lower():
                return True
        return False

    def _overlaps(self, record: T, query: ListQuery) -> bool:
        if self.date_range is None:
            return True
        start, end = self.date_range(record)
        start = start or end
        end = end or start
        if start is None or end is None:
            return False
        if query.date_to is not None and start > query.date_to:
            return False
        if query.date_from is not None and end < query.date_from:
            return False
        return True

    def matches(self, record: T, query: ListQuery) -> bool:
        term = query.search.strip().lower()
        if term and not self._matches_search(record, term):
            return False
        if (query.date_from or query.date_to) and not self._overlaps(record, query):
            return False
        if query.status and self.status_of is not None:
            if _status_text(self.status_of(record)) != query.status.lower():
                return False
        return True

    def filter(self, records: Iterable[T], query: ListQuery) -> list[T]:
        filtered = [record for record in records if self.matches(record, query)]
        if self.sort_key is not None:
            filtered.sort(key=self.sort_key, reverse=self.descending)
        return filtered

    def paginate(self, records: Iterable[T], query: ListQuery) -> Page[T]:
        """Filter, then slice the requested page, clamping past the last page."""

        all_records = list(records)
        filtered = self.filter(all_records, query)
        total = len(filtered)
        last_page = max(1, math.ceil(total / query.page_size))
        page = min(query.page, last_page)
        offset = (page - 1) * query.page_size

        empty_state = None
        if total == 0:
            empty_state = EmptyState.NO_MATCHES if all_records else EmptyState.NO_RECORDS
        return Page(
            items=filtered[offset : offset + query.page_size],
            total=total,
            page=page,
            page_size=query.page_size,
            empty_state=empty_state,
        )


def _order_dates(order: TravelOrder) -> tuple[date | None, date | None]:
    return order.start_date, order.end_date


travel_order_view: ListView[TravelOrder] = ListView(
    text_fields=(
        lambda order: order.travel_purpose,
        lambda order: order.destination,
        lambda order: order.personnel_name,
    ),
    date_range=_order_dates,
    status_of=lambda order: order.status,
)


def director_history_view(director_id: int) -> ListView[TravelOrder]:
    """History tabs filter on the director's own decision, not the order's."""

    def decision_of(order: TravelOrder) -> object:
        acted = [step for step in order.steps_for(director_id) if step.has_acted]
        return acted[-1].status if acted else None

    return ListView(
        text_fields=travel_order_view.text_fields,
        date_range=_order_dates,
        status_of=decision_of,
    )


roster_view: ListView[Actor] = ListView(
    text_fields=(
        lambda actor: actor.display_name,
        lambda actor: actor.first_name,
        lambda actor: actor.middle_name,
        lambda actor: actor.last_name,
        lambda actor: actor.username,
        lambda actor: actor.department,
        lambda actor: actor.position,
        lambda actor: actor.contact_information,
    ),
    status_of=lambda actor: "active" if actor.is_active else "inactive",
    sort_key=lambda actor: actor.display_name.lower(),
)
