"""config.py — Server settings.

Defaults come from the environment; CLI flags override them.

    WORKLOG_ADDR      listen address, Go style ":8080" or "host:port"
    WORKLOG_TOKEN     shared secret; set it to run the single-user variant
    WORKLOG_DB        path to the SQLite file
    WORKLOG_RAW_TAGS  "1"/"true"/"yes" skips tag normalization
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from .broadcast import Broadcaster
from .queue import DEFAULT_INTAKE_SIZE
from .registry import DEFAULT_MAILBOX_CAPACITY
from .sse import DEFAULT_HEARTBEAT

DEFAULT_ADDR = ":8080"
DEFAULT_DB_PATH = Path("./worklog.db")
STATIC_DIR = Path(__file__).parent / "static"

_TRUTHY = ("1", "true", "yes")


def parse_addr(addr: str) -> tuple[str, int]:
    """Split "host:port". An empty host means all interfaces.

    Raises ValueError for anything that isn't host:port with a numeric port.
    """
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address: {addr!r}")
    return host or "0.0.0.0", int(port)


@dataclass
class ServerConfig:
    """Everything the server needs to start."""

    host: str = "0.0.0.0"
    port: int = 8080
    token: str | None = None
    db_path: Path = DEFAULT_DB_PATH
    normalize_tags: bool = True
    mailbox_capacity: int = DEFAULT_MAILBOX_CAPACITY
    intake_size: int = DEFAULT_INTAKE_SIZE
    retry_timeout: float = Broadcaster.DEFAULT_RETRY_TIMEOUT
    heartbeat: float = DEFAULT_HEARTBEAT
    static_dir: Path = field(default=STATIC_DIR)

    @property
    def multi_user(self) -> bool:
        """No shared token configured means per-user tokens."""
        return not self.token

    @property
    def addr(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def from_env(cls) -> ServerConfig:
        host, port = parse_addr(os.environ.get("WORKLOG_ADDR", DEFAULT_ADDR))
        return cls(
            host=host,
            port=port,
            token=os.environ.get("WORKLOG_TOKEN") or None,
            db_path=Path(os.environ.get("WORKLOG_DB", str(DEFAULT_DB_PATH))),
            normalize_tags=os.environ.get("WORKLOG_RAW_TAGS", "").lower() not in _TRUTHY,
        )
