"""sse.py — Server-Sent Events transport for live viewers.

The stream loop only talks to an EventSink. Anything that can push an
event and a keepalive comment to the peer qualifies; SSEResponse is the
aiohttp one. The capability is fixed when the sink is built, not probed
per connection.

Wire format, one event per entry:

    data: {"id": 7, "message": "...", "timestamp": "..."}\\n\\n

plus a ": ping" comment every heartbeat interval while idle. The ping is
also how a vanished peer gets noticed: writing to it fails.
"""

from __future__ import annotations

import asyncio
import json
from typing import Protocol

from aiohttp import web

from .registry import Mailbox

DEFAULT_HEARTBEAT = 15.0

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class EventSink(Protocol):
    """Where a live stream writes to."""

    async def send(self, data: str) -> None:
        """Write one event whose payload is data (a single line)."""
        ...

    async def comment(self, text: str) -> None:
        """Write a comment line; clients ignore it."""
        ...


class SSEResponse:
    """EventSink over a prepared aiohttp StreamResponse.

    Every write is flushed to the transport before it returns.
    """

    def __init__(self, response: web.StreamResponse):
        if not response.prepared:
            raise RuntimeError("SSE response must be prepared before streaming")
        self._response = response

    @classmethod
    async def open(cls, request: web.Request) -> SSEResponse:
        response = web.StreamResponse(status=200, headers=SSE_HEADERS)
        await response.prepare(request)
        return cls(response)

    @property
    def response(self) -> web.StreamResponse:
        return self._response

    async def send(self, data: str) -> None:
        await self._response.write(f"data: {data}\n\n".encode())

    async def comment(self, text: str) -> None:
        await self._response.write(f": {text}\n\n".encode())


async def pump(mailbox: Mailbox, sink: EventSink, heartbeat: float = DEFAULT_HEARTBEAT) -> None:
    """Copy entries from the mailbox to the sink until the mailbox closes.

    Holds no locks while waiting. Write failures (peer gone) propagate.
    """
    while True:
        try:
            entry = await mailbox.receive(timeout=heartbeat)
        except asyncio.TimeoutError:
            await sink.comment("ping")
            continue
        if entry is None:
            return
        await sink.send(json.dumps(entry.to_dict()))
