"""asyncio helpers shared by the per-user controllers.

- LatestTask: cancel-and-replace runner. Starting a new run cancels the one
  in flight; the superseded caller returns None instead of raising.
- Debouncer: runs a coroutine factory after a quiet period; every schedule()
  call restarts the timer.

Both own their tasks and cancel them in close(). Nothing here knows about
HTTP or the remote API.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

CoroFactory = Callable[[], Awaitable[Any]]


class LatestTask:
    """Runs at most one instance of an operation; the newest wins.

    Args:
        name: Label used in debug logs.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, factory: CoroFactory) -> Any:
        """Cancels the in-flight run, starts a new one and awaits it.

        Returns:
            The coroutine's result, or None if a newer run superseded it.

        Raises:
            Whatever the coroutine raises. Cancelling the caller also cancels
            the run.
        """
        self.cancel()
        task = asyncio.ensure_future(factory())
        self._task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._task is task and task.done():
                self._task = None
        if task.cancelled():
            logger.debug("%s superseded by a newer request", self._name)
            return None
        return task.result()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def close(self) -> None:
        task = self._task
        self.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)


class Debouncer:
    """Delays a coroutine until no new schedule() arrived for ``delay`` seconds.

    Args:
        delay: Quiet period in seconds.
        name: Label used in logs.
    """

    def __init__(self, delay: float, name: str) -> None:
        self.delay = delay
        self._name = name
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, factory: CoroFactory, delay: float | None = None) -> asyncio.Task:
        """(Re)starts the timer. Returns the task that will run the call.

        ``delay`` overrides the quiet period for this call (0 runs it on the
        next loop iteration).
        """
        self.cancel()
        self._task = asyncio.ensure_future(
            self._fire(factory, self.delay if delay is None else delay)
        )
        return self._task

    async def _fire(self, factory: CoroFactory, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await factory()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Debounced %s failed", self._name)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """Waits for the pending call, if any (tests and shutdown)."""
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        task = self._task
        self.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
