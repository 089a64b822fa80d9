"""pipeline.py — Write path and read path.

IngestPipeline.submit() is the only way an entry gets created:

    authenticate → validate → normalize tags → persist → publish

Authentication and validation come first, so a rejected request leaves
no trace in the store. Persisting is the durability contract: once
append() returns an id, submit() succeeds. Publishing to the live
viewers afterwards is best effort and cannot fail the request.

ReadPipeline.snapshot() serves today's backlog, oldest first. Callers
that show newest first reverse it themselves.

Storage and directory calls are synchronous and run in worker threads
via asyncio.to_thread so they never stall the event loop.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import logfire

from .auth import Authenticator
from .broadcast import Broadcaster
from .errors import ValidationError
from .models import Entry, User, encodable, normalize_tags, now_rfc3339
from .store import EntryStore


def _validate_message(raw: Any) -> str:
    if not isinstance(raw, str) or raw == "":
        raise ValidationError("empty message")
    if not encodable(raw):
        raise ValidationError("message must be valid UTF-8")
    return raw


def _validate_tags(raw: Any) -> list[str] | None:
    if raw is None:
        return None
    if not isinstance(raw, list) or not all(isinstance(tag, str) for tag in raw):
        raise ValidationError("tags must be a list of strings")
    if not all(encodable(tag) for tag in raw):
        raise ValidationError("tags must be valid UTF-8")
    return raw


class IngestPipeline:
    """Validates, persists, and publishes new entries."""

    def __init__(
        self,
        store: EntryStore,
        broadcaster: Broadcaster,
        auth: Authenticator,
        normalize: bool = True,
        clock: Callable[[], str] = now_rfc3339,
    ):
        """
        Args:
            store: Where entries are persisted.
            broadcaster: Where persisted entries are published.
            auth: Token resolution for the configured variant.
            normalize: Apply tag normalization (trim, upper, spaces → _).
                Empty tags are dropped either way.
            clock: Timestamp source, RFC 3339 at second precision.
        """
        self._store = store
        self._broadcaster = broadcaster
        self._auth = auth
        self._normalize = normalize
        self._clock = clock

    async def authenticate(self, token: str | None) -> User | None:
        """Resolve the acting user. Raises AuthError."""
        return await asyncio.to_thread(self._auth.authenticate, token)

    async def submit(
        self,
        raw_message: Any,
        raw_tags: Any = None,
        token: str | None = None,
    ) -> Entry:
        """Create one entry.

        Raises:
            AuthError: token missing or unknown.
            ValidationError: empty message or malformed tags.
            StorageError: the insert failed; nothing was persisted.
        """
        user = await self.authenticate(token)
        message = _validate_message(raw_message)
        tags = _validate_tags(raw_tags)
        if self._normalize:
            stored_tags = normalize_tags(tags)
        else:
            stored_tags = tuple(tag for tag in tags or () if tag) or None

        timestamp = self._clock()
        entry_id = await asyncio.to_thread(
            self._store.append,
            message,
            stored_tags,
            timestamp,
            user.id if user else None,
        )
        entry = Entry(
            id=entry_id,
            message=message,
            tags=stored_tags,
            timestamp=timestamp,
            username=user.username if user else None,
        )
        logfire.info(
            "Entry {id} persisted ({username})",
            id=entry.id,
            username=entry.username or "owner",
        )

        try:
            self._broadcaster.publish(entry)
        except Exception:
            logfire.exception("Publishing entry {id} failed", id=entry.id)

        return entry


class ReadPipeline:
    """Serves the day's backlog to newly connecting viewers."""

    def __init__(self, store: EntryStore):
        self._store = store

    async def snapshot(self, username: str | None = None) -> list[Entry]:
        """Today's entries, oldest first, optionally for one user.

        Storage failures propagate as StorageError.
        """
        return await asyncio.to_thread(self._store.query_today, username)
