"""worklog - a personal status log with live viewers.

Architecture:
- Entries are appended to SQLite and read back one local day at a time
- A single broadcaster fans each persisted entry out to every live viewer
- Viewers hold bounded mailboxes; a slow viewer loses updates, nobody waits
"""

__version__ = "0.1.0"

from .broadcast import Broadcaster
from .config import ServerConfig
from .errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
    WorklogError,
)
from .models import Entry, User
from .observability import configure as configure_observability
from .pipeline import IngestPipeline, ReadPipeline
from .registry import ClientRegistry, Mailbox
from .server import WorklogServer
from .store import Database, EntryStore
from .users import UserDirectory

__all__ = [
    # Server
    "WorklogServer",
    "ServerConfig",
    # Core
    "Broadcaster",
    "ClientRegistry",
    "Mailbox",
    "IngestPipeline",
    "ReadPipeline",
    "Database",
    "EntryStore",
    "UserDirectory",
    "Entry",
    "User",
    # Errors
    "WorklogError",
    "ValidationError",
    "AuthError",
    "NotFoundError",
    "ConflictError",
    "StorageError",
    # Observability
    "configure_observability",
]
