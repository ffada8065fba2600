"""
Fetch-then-slice pagination shared by every backend.

Directory backends do not support server-side offsets. A page is served by
pulling backend batches in order, following the backend continuation token,
until enough records exist to cover ``skip + page_size``, then slicing the
requested window out of memory.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Generic, List, Optional, TypeVar

from ..models.paging import PagedResult, PageRequest, UNKNOWN_TOTAL

logger = logging.getLogger(__name__)

R = TypeVar("R")
T = TypeVar("T")


class BatchSource(ABC, Generic[R, T]):
    """
    Per-backend hooks used by ``fetch_page``.

    A source issues one already-translated query. ``execute_batch`` is
    called with ``None`` for the first batch and with the token returned by
    ``continuation_token_of`` for every following batch. Sources without a
    continuation token do a full linear scan in the first batch and return
    ``None`` as the token.
    """

    #: Records requested per backend round-trip, None when unbounded.
    batch_size: Optional[int] = None

    @abstractmethod
    async def execute_batch(self, continuation_token: Optional[str]) -> R:
        """Fetch one raw batch from the backend."""

    @abstractmethod
    def items_of(self, response: R) -> List[Any]:
        """Raw records contained in a batch."""

    @abstractmethod
    def continuation_token_of(self, response: R) -> Optional[str]:
        """Token for the next batch, None when the scan is exhausted."""

    def total_count_of(self, response: R) -> Optional[int]:
        """Authoritative total reported by the backend, if any."""
        return None

    @abstractmethod
    def map_item(self, record: Any) -> T:
        """Project a raw record into a domain entity."""


async def fetch_page(source: BatchSource[Any, T], request: PageRequest) -> PagedResult[T]:
    """
    Serve one page from a batch source.

    Batches are fetched strictly in sequence. Any exception raised by the
    source aborts the call and nothing accumulated so far is returned.

    Args:
        source: Backend batch source for one query.
        request: Requested page window.

    Returns:
        PagedResult[T]: At most ``request.page_size`` items. ``total_count``
        is the backend count when reported, otherwise the number of records
        scanned.
    """
    wanted = request.skip + request.page_size
    accumulated: List[Any] = []
    total_count: Optional[int] = None
    token: Optional[str] = None
    batches = 0

    while True:
        response = await source.execute_batch(token)
        batches += 1
        accumulated.extend(source.items_of(response))
        if total_count is None:
            total_count = source.total_count_of(response)
        token = source.continuation_token_of(response)

        if token is None or len(accumulated) >= wanted:
            break

    if total_count is None:
        total_count = len(accumulated)

    window = accumulated[request.skip:wanted]
    logger.debug(
        f"Paged fetch: {batches} batch(es), {len(accumulated)} scanned, "
        f"page {request.page_number} returns {len(window)}"
    )

    return PagedResult.create(
        [source.map_item(record) for record in window],
        request.page_number,
        request.page_size,
        total_count if total_count >= 0 else UNKNOWN_TOTAL,
        continuation_token=token,
    )
