"""broadcast.py — Fan-out of persisted entries to every live viewer.

One Broadcaster per server. It owns the intake queue and a single fanout
task: the task takes entries off the intake in order and offers each one
to every open mailbox in the ClientRegistry. A full mailbox loses that
entry; nobody else notices. Slow viewers miss live updates instead of
stalling ingestion or the other viewers.

The producer side never blocks either. publish() tries the intake once;
if it is full, the entry joins a bounded overflow backlog that one
retry task feeds into the intake, oldest first, giving each entry up to
retry_timeout seconds to find room. Entries that still don't fit are
dropped and logged.

Lifecycle:
    broadcaster = Broadcaster(registry)
    broadcaster.start()           # inside a running loop
    broadcaster.publish(entry)    # from the ingest pipeline
    await broadcaster.stop()      # flush backlog, close intake, drain
"""

from __future__ import annotations

import asyncio
from collections import deque

import logfire

from .models import Entry
from .queue import DEFAULT_INTAKE_SIZE, IntakeQueue
from .registry import DEFAULT_MAILBOX_CAPACITY, ClientRegistry, Mailbox


class Broadcaster:
    """Single sequential fanout from the intake queue to all mailboxes.

    Usage:
        broadcaster = Broadcaster(registry)
        broadcaster.start()

        # Viewer side (one per stream connection)
        mailbox = broadcaster.subscribe()
        entry = await mailbox.receive()
        broadcaster.unsubscribe(mailbox)

        # Producer side (after the entry is persisted)
        broadcaster.publish(entry)
    """

    DEFAULT_RETRY_TIMEOUT = 5.0
    DEFAULT_MAX_BACKLOG = 1024

    def __init__(
        self,
        registry: ClientRegistry,
        intake_size: int = DEFAULT_INTAKE_SIZE,
        retry_timeout: float = DEFAULT_RETRY_TIMEOUT,
        max_backlog: int = DEFAULT_MAX_BACKLOG,
    ):
        self._registry = registry
        self._intake = IntakeQueue(maxsize=intake_size)
        self._retry_timeout = retry_timeout
        self._max_backlog = max_backlog

        self._backlog: deque[Entry] = deque()
        self._retry_task: asyncio.Task | None = None
        self._fanout_task: asyncio.Task | None = None
        self._stopping = False

        self._published = 0
        self._delivered = 0
        self._dropped = 0
        self._lost = 0

    # -- Properties -----------------------------------------------------------

    @property
    def registry(self) -> ClientRegistry:
        return self._registry

    @property
    def intake(self) -> IntakeQueue:
        return self._intake

    @property
    def running(self) -> bool:
        return self._fanout_task is not None and not self._fanout_task.done()

    @property
    def backlog_size(self) -> int:
        """Entries waiting for room in the intake."""
        return len(self._backlog)

    @property
    def published(self) -> int:
        """Entries accepted by publish()."""
        return self._published

    @property
    def delivered(self) -> int:
        """Successful mailbox deliveries, counted per viewer."""
        return self._delivered

    @property
    def dropped(self) -> int:
        """Per-viewer drops because a mailbox was full."""
        return self._dropped

    @property
    def lost(self) -> int:
        """Entries that never reached the intake (backlog full or timed out)."""
        return self._lost

    # -- Viewers --------------------------------------------------------------

    def subscribe(self, capacity: int = DEFAULT_MAILBOX_CAPACITY) -> Mailbox:
        """Create a mailbox and register it for live entries.

        Only entries fanned out after this call reach the mailbox.
        """
        mailbox = Mailbox(capacity=capacity)
        self._registry.register(mailbox)
        return mailbox

    def unsubscribe(self, mailbox: Mailbox) -> None:
        """Unregister and close. Idempotent."""
        self._registry.unregister(mailbox)

    # -- Lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Spawn the fanout task. Must be called from a running loop."""
        if self._fanout_task is not None:
            raise RuntimeError("Broadcaster already started")
        self._fanout_task = asyncio.create_task(self._run(), name="worklog-fanout")
        logfire.info("Broadcaster started (intake={size})", size=self._intake.maxsize)

    async def stop(self) -> None:
        """Flush the backlog, close the intake, and wait for the drain.

        Idempotent.
        """
        if self._stopping:
            return
        self._stopping = True

        if self._retry_task is not None and not self._retry_task.done():
            try:
                await asyncio.wait_for(self._retry_task, timeout=self._retry_timeout)
            except asyncio.TimeoutError:
                pass

        if self._fanout_task is None:
            # Never started: nobody will consume, so discard instead of waiting.
            self._lost += len(self._intake.drain())
            await self._intake.close()
        else:
            await self._intake.close()
            await self._fanout_task

        if self._backlog:
            self._lost += len(self._backlog)
            self._backlog.clear()

        logfire.info(
            "Broadcaster stopped: {published} published, {delivered} delivered, "
            "{dropped} dropped, {lost} lost",
            published=self._published,
            delivered=self._delivered,
            dropped=self._dropped,
            lost=self._lost,
        )

    # -- Producer side --------------------------------------------------------

    def publish(self, entry: Entry) -> bool:
        """Hand a persisted entry to the fanout. Never blocks, never raises.

        Returns True if the entry was accepted (queued or backlogged),
        False if it was dropped.
        """
        if self._stopping or self._intake.closed:
            self._lost += 1
            logfire.warning("Broadcaster stopped, entry {id} not published", id=entry.id)
            return False

        # With a backlog pending, going straight to the intake would jump the line.
        if not self._backlog:
            try:
                self._intake.put_nowait(entry)
            except asyncio.QueueFull:
                pass
            else:
                self._published += 1
                return True

        if len(self._backlog) >= self._max_backlog:
            self._lost += 1
            logfire.warning(
                "Intake backlog full ({size}), dropping entry {id}",
                size=len(self._backlog),
                id=entry.id,
            )
            return False

        self._backlog.append(entry)
        self._published += 1
        if self._retry_task is None or self._retry_task.done():
            self._retry_task = asyncio.create_task(
                self._retry_backlog(), name="worklog-intake-retry"
            )
        return True

    async def _retry_backlog(self) -> None:
        """Feed backlogged entries into the intake, oldest first."""
        while self._backlog:
            entry = self._backlog[0]
            try:
                await asyncio.wait_for(self._intake.put(entry), timeout=self._retry_timeout)
            except asyncio.TimeoutError:
                self._lost += 1
                logfire.warning(
                    "Intake still full after {timeout}s, dropping entry {id}",
                    timeout=self._retry_timeout,
                    id=entry.id,
                )
            except RuntimeError:
                # Intake closed underneath us; stop() accounts for the rest.
                return
            self._backlog.popleft()

    # -- Fanout ---------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            entry = await self._intake.get()
            if entry is None:
                return
            self._fanout(entry)

    def _fanout(self, entry: Entry) -> None:
        def deliver(mailbox: Mailbox) -> None:
            if mailbox.offer(entry):
                self._delivered += 1
            else:
                self._dropped += 1
                logfire.debug("Mailbox full, entry {id} dropped for one viewer", id=entry.id)

        viewers = self._registry.for_each_open(deliver)
        logfire.debug("Fanned out entry {id} to {viewers} viewers", id=entry.id, viewers=viewers)
