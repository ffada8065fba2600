import math
from dataclasses import dataclass, field
from typing import Generic, List, Optional, Sequence, TypeVar

T = TypeVar("T")

UNKNOWN_TOTAL = -1


@dataclass(frozen=True)
class PageRequest:
    """A 1-based page window over a result set."""

    page_number: int = 1
    page_size: int = 50

    def __post_init__(self):
        if self.page_number < 1:
            raise ValueError(f"page_number must be >= 1, got {self.page_number}")
        if self.page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {self.page_size}")

    @property
    def skip(self) -> int:
        return (self.page_number - 1) * self.page_size


@dataclass
class PagedResult(Generic[T]):
    """
    One page of results.

    Attributes:
        items: The records on this page, never more than page_size.
        page: 1-based page number.
        page_size: Requested page size.
        total_count: Authoritative or scanned total, -1 when unknown.
        continuation_token: Backend cursor left over after the scan, if any.
    """

    items: List[T] = field(default_factory=list)
    page: int = 1
    page_size: int = 50
    total_count: int = UNKNOWN_TOTAL
    continuation_token: Optional[str] = None

    @property
    def total_pages(self) -> int:
        if self.total_count < 0:
            return UNKNOWN_TOTAL
        return math.ceil(self.total_count / self.page_size)

    @property
    def has_next_page(self) -> bool:
        # A leftover backend cursor means the scan stopped before the end, so
        # total_count only counts what was read.
        if self.continuation_token is not None:
            return True
        if self.total_count < 0:
            return len(self.items) >= self.page_size
        return self.page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.page > 1

    @classmethod
    def empty(cls, page: int = 1, page_size: int = 50) -> "PagedResult[T]":
        return cls(items=[], page=page, page_size=page_size, total_count=0)

    @classmethod
    def create(
        cls,
        items: Sequence[T],
        page: int,
        page_size: int,
        total_count: int = UNKNOWN_TOTAL,
        continuation_token: Optional[str] = None,
    ) -> "PagedResult[T]":
        """
        Build a page, refusing to hold more than page_size items.

        Raises:
            ValueError: If items exceeds page_size or total_count < -1.
        """
        items = list(items)
        if len(items) > page_size:
            raise ValueError(
                f"Page holds {len(items)} items but page_size is {page_size}"
            )
        if total_count < UNKNOWN_TOTAL:
            raise ValueError(f"total_count must be >= -1, got {total_count}")
        return cls(
            items=items,
            page=page,
            page_size=page_size,
            total_count=total_count,
            continuation_token=continuation_token,
        )
