"""queue.py — The broadcaster's intake. Many producers, one consumer.

The ingest pipeline puts freshly persisted entries here; the broadcaster's
fanout task gets them out, one at a time, in the order they went in.

The queue is bounded (32 by default). Producers on the request path only
ever use put_nowait(); waiting for space is the broadcaster's retry
task's job, never the HTTP handler's.

close() enqueues a None sentinel behind whatever is still waiting, so the
consumer drains every entry before it sees the shutdown signal.
"""

from __future__ import annotations

import asyncio

from .models import Entry

DEFAULT_INTAKE_SIZE = 32


class IntakeQueue:
    """Bounded FIFO of entries waiting to be fanned out."""

    def __init__(self, maxsize: int = DEFAULT_INTAKE_SIZE):
        """
        Args:
            maxsize: Capacity. 0 = unbounded.
        """
        self._queue: asyncio.Queue[Entry | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the queue has stopped accepting entries."""
        return self._closed

    @property
    def qsize(self) -> int:
        return self._queue.qsize()

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    @property
    def empty(self) -> bool:
        return self._queue.empty()

    @property
    def full(self) -> bool:
        return self._queue.full()

    async def put(self, entry: Entry) -> None:
        """Add an entry, waiting for space if the queue is full.

        Raises RuntimeError if the queue is closed.
        """
        if self._closed:
            raise RuntimeError("Cannot put to a closed queue")
        await self._queue.put(entry)

    def put_nowait(self, entry: Entry) -> None:
        """Add an entry without waiting.

        Raises asyncio.QueueFull if the queue is at capacity.
        Raises RuntimeError if the queue is closed.
        """
        if self._closed:
            raise RuntimeError("Cannot put to a closed queue")
        self._queue.put_nowait(entry)

    async def get(self) -> Entry | None:
        """Next entry, or None once the queue is closed and drained."""
        return await self._queue.get()

    async def close(self) -> None:
        """Stop accepting entries and signal the consumer.

        Waits for room for the sentinel if the queue is full; the
        consumer is expected to be running.
        """
        if self._closed:
            return
        self._closed = True
        await self._queue.put(None)

    def drain(self) -> list[Entry]:
        """Remove and return everything queued, without the sentinel."""
        entries = []
        while not self._queue.empty():
            try:
                entry = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if entry is not None:
                entries.append(entry)
        return entries
