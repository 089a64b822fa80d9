"""client.py — Talking to a worklog server over HTTP.

Posting an update:
    client = WorklogClient(":8080", token="...")
    entry = client.post_update("shipped the thing", tags=["release"])

Registering a user (multi-user servers):
    user = WorklogClient(":8080").register("alice")
    user["token"]  # shown once; keep it
"""

from __future__ import annotations

from typing import Any

import httpx

from . import __version__

TIMEOUT = 5.0
AUTH_HEADER = "X-Auth-Token"
USER_AGENT = f"worklog-client/{__version__}"


class ClientError(Exception):
    """The server answered with an error status."""

    def __init__(self, status: int, detail: str):
        super().__init__(f"{status}: {detail}")
        self.status = status
        self.detail = detail


def base_url(addr: str) -> str:
    """":8080" → "http://localhost:8080"; full URLs pass through."""
    if addr.startswith(("http://", "https://")):
        return addr.rstrip("/")
    if addr.startswith(":"):
        addr = "localhost" + addr
    return f"http://{addr}"


def split_tags(raw: str) -> list[str] | None:
    """Comma-separated tags, trimmed, empties dropped. None if nothing left."""
    tags = [tag.strip() for tag in raw.split(",") if tag.strip()]
    return tags or None


class WorklogClient:
    """Thin synchronous wrapper around httpx.Client."""

    def __init__(
        self,
        addr: str,
        token: str | None = None,
        timeout: float = TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"User-Agent": USER_AGENT}
        if token:
            headers[AUTH_HEADER] = token
        self._http = httpx.Client(
            base_url=base_url(addr),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> WorklogClient:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def post_update(self, message: str, tags: list[str] | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": message}
        if tags:
            payload["tags"] = tags
        return self._request("POST", "/update", json=payload)

    def register(self, username: str) -> dict[str, Any]:
        return self._request("POST", "/users", json={"username": username})

    def initial(self, username: str | None = None) -> list[dict[str, Any]]:
        path = f"/initial/{username}" if username else "/initial"
        return self._request("GET", path)

    def _request(self, method: str, path: str, **kwargs) -> Any:
        response = self._http.request(method, path, **kwargs)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            detail = body.get("error", response.text) if isinstance(body, dict) else response.text
            raise ClientError(response.status_code, detail)
        return response.json()
