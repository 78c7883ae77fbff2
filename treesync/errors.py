"""Exceptions raised inside the sync core."""
from typing import Optional


class SyncError(Exception):
    """Base class for all sync core errors."""


class ApiError(SyncError):
    """An API call failed.

    ``retryable`` is set for failures that may succeed later without any
    change on our side: connection errors, timeouts, 429 and 5xx responses.
    """

    def __init__(self, message: str, status: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class TransportError(SyncError):
    """A stream or poll connection dropped or could not be opened."""


class MalformedEventError(SyncError):
    """A server payload could not be interpreted."""


class ChannelStateError(SyncError):
    """An illegal channel state transition was requested."""
