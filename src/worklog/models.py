"""models.py — Entries, users, and the normalization rules they share.

Both dataclasses are frozen. An Entry handed to the broadcaster is the
same value every mailbox sees; nobody can change it after the store
assigned its id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

import pendulum


def now_rfc3339() -> str:
    """Server local time, second precision, RFC 3339."""
    return pendulum.now().replace(microsecond=0).isoformat()


# -- Normalization ------------------------------------------------------------


def normalize_tag(tag: str) -> str:
    """Trim, upper-case, and replace internal spaces with underscores."""
    return tag.strip().upper().replace(" ", "_")


def normalize_tags(tags: Iterable[str] | None) -> tuple[str, ...] | None:
    """Normalize every tag, keeping order and duplicates.

    Tags that normalize to "" are dropped. None, an empty sequence, or one
    holding only blank tags stays absent (None).
    """
    if not tags:
        return None
    normalized = (normalize_tag(tag) for tag in tags)
    return tuple(tag for tag in normalized if tag) or None


def normalize_username(username: str) -> str:
    return username.strip().upper()


def encodable(text: str) -> bool:
    """False when text holds lone surrogates and cannot be stored as UTF-8."""
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


# -- Tag storage --------------------------------------------------------------
# Tags live in a single TEXT column, comma-joined.


def join_tags(tags: Iterable[str] | None) -> str:
    return ",".join(tags) if tags else ""


def split_tags(stored: str | None) -> tuple[str, ...] | None:
    """Reconstitute stored tags. An empty value means no tags (None)."""
    if not stored:
        return None
    return tuple(stored.split(","))


# -- Records ------------------------------------------------------------------


@dataclass(frozen=True)
class Entry:
    """One persisted status update."""

    id: int
    message: str
    timestamp: str
    tags: tuple[str, ...] | None = None
    username: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON shape: username and tags are omitted when absent."""
        data: dict[str, Any] = {"id": self.id}
        if self.username:
            data["username"] = self.username
        data["message"] = self.message
        if self.tags:
            data["tags"] = list(self.tags)
        data["timestamp"] = self.timestamp
        return data


@dataclass(frozen=True)
class User:
    """A registered user.

    token is only populated on the value returned from creation. Lookups
    never hand the token back out.
    """

    id: int
    username: str
    token: str | None = None
    created_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "username": self.username}
        if self.token is not None:
            data["token"] = self.token
        return data
