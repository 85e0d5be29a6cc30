"""
Hand-off primitives between a sync task and its consumer.

A sync run produces items on an ItemStream and finishes with exactly one
terminal value: SyncComplete (carrying the new encoded cursor) or
SyncFailure (carrying the error). The consumer drains the stream until it
closes, then reads the terminal value; the same loop works for success and
failure.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, NoReturn, TypeVar, Union

from docsync.logic.cancellation import CancellationToken
from docsync.logic.exceptions import SyncCancelledError

logger = logging.getLogger("docsync.streams")

T = TypeVar("T")


@dataclass(frozen=True)
class SyncStats:
    """
    Counters reported with a completed sync.

    Attributes:
        documents: Items pushed to the stream.
        skipped: Items dropped by filters or failed detail fetches.
        content_failures: Items emitted metadata-only after a failed download.
        failed_sub_resources: Sub-resources that could not be enumerated.
        retried_sub_resources: Sub-resources re-enumerated after token expiry.
    """

    documents: int = 0
    skipped: int = 0
    content_failures: int = 0
    failed_sub_resources: tuple[str, ...] = ()
    retried_sub_resources: tuple[str, ...] = ()


@dataclass(frozen=True)
class SyncComplete:
    """Terminal value of a successful run."""

    new_cursor: str
    stats: SyncStats = field(default_factory=SyncStats)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class SyncFailure:
    """Terminal value of a failed run."""

    error: Exception

    @property
    def ok(self) -> bool:
        return False

    def raise_error(self) -> NoReturn:
        """Re-raise the wrapped error."""
        raise self.error


SyncResult = Union[SyncComplete, SyncFailure]


class ItemStream(Generic[T]):
    """
    Rendezvous hand-off of sync items.

    push() returns only once the consumer has taken the item, so the
    producer never runs ahead of what has been observed. A push aborted
    by the producer's cancellation token withdraws its item. Iteration
    ends once the stream is closed and drained.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[tuple[T, asyncio.Future[None]]] = asyncio.Queue()
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        """Return True once the producer has closed the stream."""
        return self._closed.is_set()

    async def push(self, item: T, cancel_token: CancellationToken) -> None:
        """
        Hand an item to the consumer and wait until it is taken.

        Args:
            item: Item to deliver.
            cancel_token: Producer's cancellation token.

        Raises:
            SyncCancelledError: If the token fires before the consumer
                takes the item.
            RuntimeError: If the stream is already closed.
        """
        if self._closed.is_set():
            raise RuntimeError("push on a closed stream")
        cancel_token.raise_if_cancelled()

        taken: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((item, taken))
        # A cancelled push leaves a cancelled future; the consumer skips it
        await cancel_token.run(taken)

    def close(self) -> None:
        """Mark the end of the stream. Never blocks."""
        self._closed.set()

    def __aiter__(self) -> "ItemStream[T]":
        return self

    def _accept(self, item: T, taken: "asyncio.Future[None]") -> bool:
        if taken.done():
            return False
        taken.set_result(None)
        return True

    async def __anext__(self) -> T:
        while True:
            while not self._queue.empty():
                item, taken = self._queue.get_nowait()
                if self._accept(item, taken):
                    return item
            if self._closed.is_set():
                raise StopAsyncIteration

            getter = asyncio.ensure_future(self._queue.get())
            closer = asyncio.ensure_future(self._closed.wait())
            try:
                done, _ = await asyncio.wait(
                    {getter, closer}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                closer.cancel()
                if not getter.done():
                    getter.cancel()

            if getter in done:
                item, taken = getter.result()
                if self._accept(item, taken):
                    return item
            # Withdrawn or closed while waiting; loop to drain what is left


class SyncRun(Generic[T]):
    """
    Handle for one running sync.

    Iterate it to receive items, then await result() for the terminal
    value. The terminal future always has room for its value, so the
    producer can finish even if the consumer stopped iterating.
    """

    def __init__(self, stream: ItemStream[T], terminal: "asyncio.Future[SyncResult]"):
        self._stream = stream
        self._terminal = terminal
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def start(
        cls,
        producer: Callable[[ItemStream[T]], Awaitable[SyncResult]],
        name: str = "docsync-run",
    ) -> "SyncRun[T]":
        """
        Schedule a producer as an independent task.

        Must be called from a running event loop.

        Args:
            producer: Coroutine function filling the stream and returning
                the terminal value.
            name: Task name for debugging.

        Returns:
            SyncRun bound to the new task.
        """
        loop = asyncio.get_running_loop()
        run: SyncRun[T] = cls(ItemStream(), loop.create_future())
        run._task = loop.create_task(run._drive(producer), name=name)
        return run

    async def _drive(
        self,
        producer: Callable[[ItemStream[T]], Awaitable[SyncResult]],
    ) -> None:
        try:
            result = await producer(self._stream)
        except asyncio.CancelledError:
            self._finish(SyncFailure(SyncCancelledError("sync task cancelled")))
            raise
        except Exception as e:
            logger.exception("❌ Sync producer raised instead of returning a result")
            result = SyncFailure(e)
        self._finish(result)

    def _finish(self, result: SyncResult) -> None:
        # Stream closes before the terminal value is published
        self._stream.close()
        if not self._terminal.done():
            self._terminal.set_result(result)

    @property
    def done(self) -> bool:
        """Return True once the terminal value is available."""
        return self._terminal.done()

    def __aiter__(self) -> ItemStream[T]:
        return self._stream

    async def result(self) -> SyncResult:
        """
        Wait for the terminal value.

        Returns:
            SyncComplete or SyncFailure.
        """
        return await asyncio.shield(self._terminal)

    async def collect(self) -> tuple[list[T], SyncResult]:
        """
        Drain the stream and return all items with the terminal value.

        Returns:
            Tuple of (items, terminal value).
        """
        items = [item async for item in self._stream]
        return items, await self.result()
