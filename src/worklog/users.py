"""users.py — Token-to-user directory for the multi-user variant.

Users are created once and never changed. The token is an opaque 16-byte
random value, hex-encoded, handed back exactly once in the creation
result. Duplicate usernames are caught by the UNIQUE constraint on
insert, not by a lookup first, so two concurrent registrations of the
same name cannot both succeed.
"""

from __future__ import annotations

import secrets
import sqlite3

import logfire

from .errors import AuthError, ConflictError, NotFoundError, StorageError, ValidationError
from .models import User, encodable, normalize_username, now_rfc3339
from .store import Database

TOKEN_BYTES = 16

INSERT_USER = """
    INSERT INTO users (username, token, created_at)
    VALUES (?, ?, ?)
"""

SELECT_USER_BY_TOKEN = "SELECT id, username, created_at FROM users WHERE token = ?"

SELECT_USER_BY_USERNAME = "SELECT id, username, created_at FROM users WHERE username = ?"


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


class UserDirectory:
    """Creates users and resolves tokens and usernames to them."""

    def __init__(self, db: Database):
        self._db = db

    def create_user(self, username: str) -> User:
        """Register a new user.

        Raises:
            ValidationError: username is blank after trimming or not valid UTF-8.
            ConflictError: the normalized username is already taken.
            StorageError: anything else went wrong in the database.
        """
        username = normalize_username(username)
        if not username:
            raise ValidationError("username required")
        if not encodable(username):
            raise ValidationError("username must be valid UTF-8")

        token = generate_token()
        created_at = now_rfc3339()

        with self._db.connect() as conn:
            try:
                with conn:
                    cursor = conn.execute(INSERT_USER, (username, token, created_at))
                    user_id = cursor.lastrowid
            except sqlite3.IntegrityError as e:
                if "users.username" in str(e):
                    raise ConflictError("username already exists") from e
                raise StorageError(f"failed to create user: {e}") from e
            except sqlite3.Error as e:
                raise StorageError(f"failed to create user: {e}") from e

        logfire.info("User created: {username}", username=username)
        return User(id=user_id, username=username, token=token, created_at=created_at)

    def lookup_by_token(self, token: str) -> User:
        if not token:
            raise AuthError("authentication token required")
        if not encodable(token):
            raise AuthError("invalid token")
        row = self._fetch_one(SELECT_USER_BY_TOKEN, token)
        if row is None:
            raise AuthError("invalid token")
        return User(id=row["id"], username=row["username"], created_at=row["created_at"])

    def lookup_by_username(self, username: str) -> User:
        username = normalize_username(username)
        if not encodable(username):
            raise NotFoundError("user not found")
        row = self._fetch_one(SELECT_USER_BY_USERNAME, username)
        if row is None:
            raise NotFoundError("user not found")
        return User(id=row["id"], username=row["username"], created_at=row["created_at"])

    def _fetch_one(self, sql: str, param: str) -> sqlite3.Row | None:
        with self._db.connect() as conn:
            try:
                return conn.execute(sql, (param,)).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"user lookup failed: {e}") from e
