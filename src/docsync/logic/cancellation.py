"""
Cancellation token threaded through every blocking point of a sync run.

The caller owns the token: it can cancel it explicitly or give it a
deadline. Producers check it before each request and race every blocking
hand-off against it.
"""

import asyncio
import time
from typing import Awaitable, TypeVar

from docsync.logic.exceptions import SyncCancelledError

T = TypeVar("T")


class CancellationToken:
    """
    Caller-controlled cancellation signal with an optional deadline.

    Safe to share between the caller and the task running a sync; the
    token must be created and used on the same event loop.
    """

    def __init__(self, timeout: float | None = None) -> None:
        """
        Initialize cancellation token.

        Args:
            timeout: Seconds after which the token cancels itself.
                None means no deadline.
        """
        self._event = asyncio.Event()
        self._reason = "sync cancelled"
        self._deadline: float | None = None
        if timeout is not None:
            self._deadline = time.monotonic() + timeout

    @property
    def cancelled(self) -> bool:
        """Return True once the token has fired (explicitly or by deadline)."""
        if not self._event.is_set() and self._deadline is not None:
            if time.monotonic() >= self._deadline:
                self._reason = "sync deadline exceeded"
                self._event.set()
        return self._event.is_set()

    @property
    def reason(self) -> str:
        """Human-readable reason the token fired."""
        return self._reason

    def cancel(self, reason: str = "sync cancelled") -> None:
        """
        Fire the token.

        Args:
            reason: Reason reported by the resulting SyncCancelledError.
        """
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """
        Raise if the token has fired.

        Raises:
            SyncCancelledError: If cancelled.
        """
        if self.cancelled:
            raise SyncCancelledError(self._reason)

    async def wait(self) -> None:
        """Block until the token fires."""
        if self.cancelled:
            return
        if self._deadline is None:
            await self._event.wait()
            return
        remaining = self._deadline - time.monotonic()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(remaining, 0))
        except asyncio.TimeoutError:
            # Deadline reached; the property records the reason
            _ = self.cancelled

    async def sleep(self, seconds: float) -> None:
        """
        Sleep, waking early if the token fires.

        Args:
            seconds: Time to sleep.

        Raises:
            SyncCancelledError: If the token fires before the sleep ends.
        """
        await self.run(asyncio.sleep(max(seconds, 0)))

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await something, abandoning it if the token fires first.

        Args:
            awaitable: Coroutine or future to await.

        Returns:
            The awaitable's result.

        Raises:
            SyncCancelledError: If the token fires first.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise SyncCancelledError(self._reason)

        work = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self.wait())
        try:
            done, _ = await asyncio.wait(
                {work, watcher}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            watcher.cancel()

        if work in done:
            return work.result()

        work.cancel()
        raise SyncCancelledError(self._reason)
