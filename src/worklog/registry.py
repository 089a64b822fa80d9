"""registry.py — Who is watching right now.

A viewer is a Mailbox: a bounded queue the broadcaster offers entries to
and the viewer's stream handler receives from. The ClientRegistry holds
the set of live mailboxes behind a reader/writer lock. Fanout takes the
read lock; register/unregister take the write lock.

The set is keyed by the mailbox object itself, so the same mailbox can
never be registered twice.

Mailboxes are loop-affine: offer(), receive() and close() run on the
event loop that owns the server. The lock is a real thread lock because
the registry is also reachable from worker threads.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Callable

from .models import Entry

DEFAULT_MAILBOX_CAPACITY = 16


# -- Reader/writer lock -------------------------------------------------------


class ReadWriteLock:
    """Many readers or one writer.

    Writer-preferring: once a writer is waiting, new readers queue behind
    it, so constant fanout cannot starve registration.

    Usage:
        lock = ReadWriteLock()
        with lock.read():
            ...
        with lock.write():
            ...
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# -- Mailbox ------------------------------------------------------------------


class Mailbox:
    """Bounded per-viewer delivery queue.

    The broadcaster never waits on a mailbox: offer() either fits the
    entry in or reports that it didn't. The viewer side waits in
    receive() for the next entry or for close(), whichever comes first.
    """

    def __init__(self, capacity: int = DEFAULT_MAILBOX_CAPACITY):
        self._queue: asyncio.Queue[Entry] = asyncio.Queue(maxsize=capacity)
        self._capacity = capacity
        self._closed = False
        self._closed_event = asyncio.Event()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def qsize(self) -> int:
        return self._queue.qsize()

    def offer(self, entry: Entry) -> bool:
        """Try to deliver without waiting. False if full or closed."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            return False
        return True

    async def receive(self, timeout: float | None = None) -> Entry | None:
        """Wait for the next entry.

        Returns None once the mailbox is closed. Raises
        asyncio.TimeoutError if nothing arrives within timeout seconds.
        """
        if self._closed:
            return None
        if not self._queue.empty():
            return self._queue.get_nowait()

        getter = asyncio.ensure_future(self._queue.get())
        closer = asyncio.ensure_future(self._closed_event.wait())
        try:
            done, _ = await asyncio.wait(
                {getter, closer},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (getter, closer):
                if not task.done():
                    task.cancel()

        if getter in done:
            return getter.result()
        if closer in done:
            return None
        raise asyncio.TimeoutError

    def close(self) -> None:
        """Close the mailbox and wake any pending receive(). Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()


# -- Registry -----------------------------------------------------------------


class ClientRegistry:
    """The set of live mailboxes.

    Membership only changes through register(), unregister() and
    close_all().
    """

    def __init__(self):
        self._lock = ReadWriteLock()
        self._members: set[Mailbox] = set()

    @property
    def count(self) -> int:
        with self._lock.read():
            return len(self._members)

    def __contains__(self, mailbox: Mailbox) -> bool:
        with self._lock.read():
            return mailbox in self._members

    def register(self, mailbox: Mailbox) -> None:
        if mailbox.closed:
            raise RuntimeError("Cannot register a closed mailbox")
        with self._lock.write():
            self._members.add(mailbox)

    def unregister(self, mailbox: Mailbox) -> None:
        """Remove and close the mailbox.

        Safe to call for a mailbox that is already gone (no-op).
        """
        with self._lock.write():
            if mailbox not in self._members:
                return
            self._members.discard(mailbox)
            mailbox.close()

    def for_each_open(self, fn: Callable[[Mailbox], None]) -> int:
        """Call fn once per registered, open mailbox under the read lock.

        fn must not register or unregister; the read lock is held while
        it runs. Returns the number of mailboxes visited.
        """
        visited = 0
        with self._lock.read():
            for mailbox in self._members:
                if mailbox.closed:
                    continue
                fn(mailbox)
                visited += 1
        return visited

    def close_all(self) -> int:
        """Unregister and close every mailbox. Used on server shutdown."""
        with self._lock.write():
            members = list(self._members)
            self._members.clear()
            for mailbox in members:
                mailbox.close()
        return len(members)
