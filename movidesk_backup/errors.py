from typing import Optional


class BackupError(Exception):
    """Base class for everything the backup raises on purpose."""


class TicketSourceError(BackupError):
    """Transport failure or non-success status from the Movidesk API."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class TicketNotFound(TicketSourceError):
    pass


class MalformedTicketError(BackupError):
    """Payload cannot be mapped to a ticket record."""
