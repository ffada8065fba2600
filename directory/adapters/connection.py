"""
Lazily established, shared backend connection.

The connection moves through UNCONNECTED -> CONNECTING -> READY, or to
FAILED when establishment raises. All callers that arrive while CONNECTING
await the same establishment task through ``asyncio.shield``, so a caller
being cancelled never cancels the establishment other callers rely on. A
FAILED connection is retried by the next caller.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, Set, TypeVar

from ..exceptions import DirectoryConnectionError
from ..metrics import MetricsRecorder

logger = logging.getLogger(__name__)

H = TypeVar("H")


class ConnectionState(Enum):
    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"


class ManagedConnection(Generic[H]):
    """
    Owns one backend handle for a service instance.

    Args:
        name: Backend label used in logs and metrics.
        opener: Coroutine function creating a ready handle.
        closer: Coroutine function releasing a handle.
        connect_timeout: Seconds allowed for establishment.
        metrics: Recorder for connection outcomes.
    """

    def __init__(
        self,
        name: str,
        opener: Callable[[], Awaitable[H]],
        closer: Callable[[H], Awaitable[None]],
        connect_timeout: float,
        metrics: MetricsRecorder,
    ):
        self.name = name
        self._opener = opener
        self._closer = closer
        self.connect_timeout = connect_timeout
        self._metrics = metrics

        self._state = ConnectionState.UNCONNECTED
        self._handle: Optional[H] = None
        self._task: Optional["asyncio.Future[H]"] = None
        self.last_error: Optional[BaseException] = None
        self._late_closes: Set["asyncio.Future[None]"] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ConnectionState.READY

    async def get(self) -> H:
        """
        Return the ready handle, establishing it first if needed.

        Raises:
            DirectoryConnectionError: If establishment fails or times out.
        """
        if self._state == ConnectionState.READY:
            return self._handle

        # No await between the check and the assignment, so only one
        # establishment task can exist.
        if self._task is None:
            self._state = ConnectionState.CONNECTING
            self._task = asyncio.ensure_future(self._establish())
            self._task.add_done_callback(_consume_exception)

        return await asyncio.shield(self._task)

    async def _establish(self) -> H:
        logger.debug(f"Establishing {self.name} connection")
        current = asyncio.current_task()
        # The opener runs as its own task so a handle it produces after a
        # timeout or cancellation can still be released.
        opening = asyncio.ensure_future(self._opener())
        try:
            handle = await asyncio.wait_for(asyncio.shield(opening), timeout=self.connect_timeout)
        except asyncio.CancelledError:
            self._release_when_opened(opening)
            if self._task is current:
                self._state = ConnectionState.UNCONNECTED
                self._task = None
            raise
        except Exception as e:
            if isinstance(e, asyncio.TimeoutError):
                self._release_when_opened(opening)
                message = f"timed out after {self.connect_timeout}s"
            else:
                message = str(e) or type(e).__name__
            if self._task is current:
                self._state = ConnectionState.FAILED
                self._task = None
            self.last_error = e
            self._metrics.record_connection(self.name, False)
            logger.error(f"{self.name} connection failed: {message}")
            raise DirectoryConnectionError("connect", message) from e

        self._handle = handle
        self._state = ConnectionState.READY
        self.last_error = None
        self._metrics.record_connection(self.name, True)
        logger.info(f"{self.name} connection ready")
        return handle

    def _release_when_opened(self, opening: "asyncio.Future[H]") -> None:
        """Close a handle the opener delivers after establishment was abandoned."""

        def release(future: "asyncio.Future[H]") -> None:
            if future.cancelled() or future.exception() is not None:
                return
            logger.warning(f"Closing {self.name} connection opened after establishment was abandoned")
            closing = asyncio.ensure_future(self._close_quietly(future.result()))
            self._late_closes.add(closing)
            closing.add_done_callback(self._late_closes.discard)

        if opening.done():
            release(opening)
        else:
            opening.add_done_callback(release)

    async def _close_quietly(self, handle: H) -> None:
        try:
            await self._closer(handle)
        except Exception as e:
            logger.warning(f"Failed to close abandoned {self.name} connection: {e}")

    async def close(self) -> None:
        """Release the handle and return to UNCONNECTED."""
        task, handle = self._task, self._handle
        self._task = None
        self._handle = None
        self._state = ConnectionState.UNCONNECTED

        if task is not None and not task.done():
            task.cancel()
        if handle is not None:
            await self._closer(handle)
            logger.info(f"{self.name} connection closed")
        if self._late_closes:
            await asyncio.gather(*list(self._late_closes))


def _consume_exception(task: "asyncio.Future") -> None:
    # Establishment errors are re-raised to every waiter; mark them retrieved
    # so an abandoned task does not log "exception was never retrieved".
    if not task.cancelled():
        task.exception()
