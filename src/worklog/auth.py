"""auth.py — Resolving the X-Auth-Token header to an acting user.

Two variants:
  - SharedTokenAuth: single-user. One secret; a match means "the owner",
    who has no User record.
  - DirectoryAuth: multi-user. The token is looked up in the UserDirectory.

Both raise AuthError for a missing or unknown token. Both are synchronous;
the ingest pipeline runs them in a worker thread.
"""

from __future__ import annotations

import hmac
from typing import Protocol

from .errors import AuthError
from .models import User
from .users import UserDirectory


class Authenticator(Protocol):
    """Turns a bearer token into the acting user (None for the sole owner)."""

    @property
    def multi_user(self) -> bool: ...

    def authenticate(self, token: str | None) -> User | None: ...


class SharedTokenAuth:
    """Single-user variant: compare against one configured secret."""

    def __init__(self, token: str):
        if not token:
            raise ValueError("shared token must not be empty")
        self._token = token.encode()

    @property
    def multi_user(self) -> bool:
        return False

    def authenticate(self, token: str | None) -> User | None:
        if not token:
            raise AuthError("authentication token required")
        try:
            presented = token.encode()
        except UnicodeEncodeError as e:
            raise AuthError("invalid token") from e
        if not hmac.compare_digest(presented, self._token):
            raise AuthError("invalid token")
        return None


class DirectoryAuth:
    """Multi-user variant: per-user tokens from the UserDirectory."""

    def __init__(self, directory: UserDirectory):
        self._directory = directory

    @property
    def multi_user(self) -> bool:
        return True

    @property
    def directory(self) -> UserDirectory:
        return self._directory

    def authenticate(self, token: str | None) -> User | None:
        if not token:
            raise AuthError("authentication token required")
        return self._directory.lookup_by_token(token)
