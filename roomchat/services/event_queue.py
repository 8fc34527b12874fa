"""
Per-connection event queues.

Socket.IO runs every inbound event in its own task, so two events from the
same client could interleave at any await. Each connection instead gets a
queue drained by a single worker: events of one connection run one at a
time in arrival order, different connections still run concurrently.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from ..errors import DisconnectedError

logger = logging.getLogger(__name__)

_STOP = object()


class ConnectionEventQueue:
    """Serializes work per connection id."""

    def __init__(self):
        self._queues: dict[str, asyncio.Queue] = {}
        self._workers: dict[str, asyncio.Task] = {}
        # sids whose queue was closed; they never get a worker again
        self._closed: set[str] = set()

    def submit(
        self, sid: str, handler: Callable[..., Awaitable[Any]], *args: Any
    ) -> asyncio.Future:
        """
        Queue ``handler(*args)`` behind any pending work for ``sid``.

        Returns a future resolved with the handler's result once it has run.
        The queue and its worker are created on first use.

        Raises:
            DisconnectedError: the connection's queue was already closed
        """
        if sid in self._closed:
            raise DisconnectedError("connection closed")
        future = asyncio.get_running_loop().create_future()
        self._queue_for(sid).put_nowait((handler, args, future))
        return future

    def pending(self, sid: str) -> int:
        """Number of queued, not yet started, events for a connection."""
        queue = self._queues.get(sid)
        return queue.qsize() if queue else 0

    def __contains__(self, sid: str) -> bool:
        return sid in self._queues

    async def close(self, sid: str) -> None:
        """Let queued work for a connection finish, then stop its worker.

        Later submissions for the same sid are refused.
        """
        self._closed.add(sid)
        queue = self._queues.pop(sid, None)
        worker = self._workers.pop(sid, None)
        if queue is None:
            return
        queue.put_nowait(_STOP)
        if worker is not None and worker is not asyncio.current_task():
            await worker

    async def close_all(self) -> None:
        """Stop every worker, draining their queues first."""
        for sid in list(self._queues):
            await self.close(sid)

    def _queue_for(self, sid: str) -> asyncio.Queue:
        queue = self._queues.get(sid)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[sid] = queue
            self._workers[sid] = asyncio.create_task(self._run(sid, queue))
        return queue

    async def _run(self, sid: str, queue: asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            if item is _STOP:
                break

            handler, args, future = item
            try:
                result = await handler(*args)
            except Exception as e:
                logger.error(f"Unhandled error processing event for {sid}: {e}")
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
        logger.debug(f"Event worker for {sid} stopped")
