"""
Paging primitives: sort orders, page requests and the two result shapes.

Page carries a total count (one extra count query); Slice only knows whether
another chunk exists (it reads one row past the requested size instead).
"""

import math
from enum import Enum
from typing import Any, Callable, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict, Field, computed_field

T = TypeVar("T")
R = TypeVar("R")


class Direction(str, Enum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: str) -> "Direction":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Invalid sort direction '{value}', expected 'asc' or 'desc'") from None


class Order(BaseModel):
    """Single sort criterion on an entity property path."""
    model_config = ConfigDict(frozen=True)

    prop: str = Field(min_length=1)
    direction: Direction = Direction.ASC

    @property
    def is_ascending(self) -> bool:
        return self.direction is Direction.ASC

    @classmethod
    def asc(cls, prop: str) -> "Order":
        return cls(prop=prop, direction=Direction.ASC)

    @classmethod
    def desc(cls, prop: str) -> "Order":
        return cls(prop=prop, direction=Direction.DESC)


class Sort(BaseModel):
    """Ordered collection of sort criteria (empty means unsorted)."""
    model_config = ConfigDict(frozen=True)

    orders: Tuple[Order, ...] = ()

    @classmethod
    def by(cls, *properties: str, direction: Direction = Direction.ASC) -> "Sort":
        """Sort.by("username") or Sort.by("username", "age", direction=Direction.DESC)."""
        return cls(orders=tuple(Order(prop=p, direction=direction) for p in properties))

    @classmethod
    def by_orders(cls, *orders: Order) -> "Sort":
        return cls(orders=tuple(orders))

    @classmethod
    def unsorted(cls) -> "Sort":
        return cls()

    @classmethod
    def parse(cls, values: Optional[Iterable[str]]) -> "Sort":
        """
        Parse query-string sort parameters.

        Each value is "prop[,prop...][,asc|desc]", e.g. "username,desc" or
        "age,username". Repeated parameters are appended in order.
        """
        orders: List[Order] = []
        for raw in values or ():
            parts = [p.strip() for p in raw.split(",") if p.strip()]
            if not parts:
                continue
            direction = Direction.ASC
            if parts[-1].lower() in (Direction.ASC.value, Direction.DESC.value):
                direction = Direction.parse(parts.pop())
            orders.extend(Order(prop=p, direction=direction) for p in parts)
        return cls(orders=tuple(orders))

    @property
    def is_sorted(self) -> bool:
        return bool(self.orders)

    def and_(self, other: "Sort") -> "Sort":
        return Sort(orders=self.orders + other.orders)

    def descending(self) -> "Sort":
        return Sort(orders=tuple(Order(prop=o.prop, direction=Direction.DESC) for o in self.orders))

    def ascending(self) -> "Sort":
        return Sort(orders=tuple(Order(prop=o.prop, direction=Direction.ASC) for o in self.orders))


class PageRequest(BaseModel):
    """Zero-based page index, page size and sort. size=0 is rejected."""
    model_config = ConfigDict(frozen=True)

    page: int = Field(default=0, ge=0)
    size: int = Field(ge=1)
    sort: Sort = Field(default_factory=Sort.unsorted)

    @classmethod
    def of(cls, page: int, size: int, sort: Optional[Sort] = None) -> "PageRequest":
        return cls(page=page, size=size, sort=sort or Sort.unsorted())

    @classmethod
    def of_size(cls, size: int) -> "PageRequest":
        return cls(page=0, size=size)

    @property
    def offset(self) -> int:
        return self.page * self.size

    def next(self) -> "PageRequest":
        return PageRequest(page=self.page + 1, size=self.size, sort=self.sort)

    def previous_or_first(self) -> "PageRequest":
        return PageRequest(page=max(self.page - 1, 0), size=self.size, sort=self.sort)

    def first(self) -> "PageRequest":
        return PageRequest(page=0, size=self.size, sort=self.sort)

    def with_sort(self, sort: Sort) -> "PageRequest":
        return PageRequest(page=self.page, size=self.size, sort=sort)


class Slice(BaseModel, Generic[T]):
    """Bounded chunk of results with a has-next flag and no total count."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    content: List[T]
    number: int
    size: int
    has_next: bool

    @computed_field
    @property
    def number_of_elements(self) -> int:
        return len(self.content)

    @computed_field
    @property
    def is_first(self) -> bool:
        return self.number == 0

    @computed_field
    @property
    def has_previous(self) -> bool:
        return self.number > 0

    @computed_field
    @property
    def is_last(self) -> bool:
        return not self.has_next

    @property
    def is_empty(self) -> bool:
        return not self.content

    def map(self, converter: Callable[[T], R]) -> "Slice[R]":
        return Slice(content=[converter(item) for item in self.content], number=self.number, size=self.size, has_next=self.has_next)

    @classmethod
    def of(cls, rows: Sequence[Any], pageable: PageRequest) -> "Slice[Any]":
        """Build from a query that fetched up to size + 1 rows."""
        has_next = len(rows) > pageable.size
        return cls(content=list(rows[: pageable.size]), number=pageable.page, size=pageable.size, has_next=has_next)


class Page(BaseModel, Generic[T]):
    """Bounded chunk of results plus the total count of the full result."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    content: List[T]
    number: int
    size: int
    total_elements: int

    @computed_field
    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_elements / self.size)

    @computed_field
    @property
    def number_of_elements(self) -> int:
        return len(self.content)

    @computed_field
    @property
    def is_first(self) -> bool:
        return self.number == 0

    @computed_field
    @property
    def is_last(self) -> bool:
        return not self.has_next

    @computed_field
    @property
    def has_next(self) -> bool:
        return (self.number + 1) * self.size < self.total_elements

    @computed_field
    @property
    def has_previous(self) -> bool:
        return self.number > 0

    @property
    def is_empty(self) -> bool:
        return not self.content

    def map(self, converter: Callable[[T], R]) -> "Page[R]":
        return Page(
            content=[converter(item) for item in self.content],
            number=self.number,
            size=self.size,
            total_elements=self.total_elements,
        )


async def build_page(
    content: Sequence[Any],
    pageable: PageRequest,
    count: Callable[[], Any],
) -> Page[Any]:
    """
    Assemble a Page, running the count query only when the total is not
    implied by the content itself.

    The total is implied when the page is not full: on the first page it is
    the content length, on a later page it is offset + content length. An
    empty page beyond the end still needs the count.
    """
    content = list(content)
    if content and len(content) < pageable.size:
        total = pageable.offset + len(content)
    else:
        total = await count()
    return Page(content=content, number=pageable.page, size=pageable.size, total_elements=total)
