"""Exceptions raised by the visit logger service."""


class VisitLoggerError(Exception):
    """Base class for service errors that map to a 503 response."""

    status_code = 503

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class DatabaseUnavailableError(VisitLoggerError):
    """MongoDB could not be reached."""


class VisitStoreError(VisitLoggerError):
    """A visit could not be written to or read from the store."""
