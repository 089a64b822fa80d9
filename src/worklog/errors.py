"""errors.py — The error taxonomy.

Every failure the service reports to a caller is one of these. Each class
carries the HTTP status it maps to, so the server middleware can turn any
WorklogError into a response without a lookup table.
"""


class WorklogError(Exception):
    """Base class for worklog domain errors."""

    status: int = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(WorklogError):
    """Malformed or empty input."""

    status = 400


class AuthError(WorklogError):
    """Missing or invalid credential."""

    status = 401


class NotFoundError(WorklogError):
    """Unknown resource."""

    status = 404


class ConflictError(WorklogError):
    """Uniqueness violation."""

    status = 409


class StorageError(WorklogError):
    """I/O or constraint failure not otherwise classified."""

    status = 500
