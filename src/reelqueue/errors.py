"""Error taxonomy shared by the repository, the Graph client and the triggers."""

from __future__ import annotations

from typing import Optional


class ReelQueueError(Exception):
    """Base class for every error the scheduler raises on purpose."""


class ValidationError(ReelQueueError):
    """Bad input: caption too long, schedule in the past, missing media."""


class ConfigurationError(ReelQueueError):
    """A required process-wide setting is missing."""


class ConflictError(ReelQueueError):
    """The operation is not allowed in the record's current state."""


class NotFoundError(ReelQueueError):
    """No upload record exists for the given id."""


class StorageError(ReelQueueError):
    """The persistence or media backend failed or is not configured."""


class RemoteApiError(ReelQueueError):
    """The Instagram Graph API returned a non-success result."""

    def __init__(self, msg: str, status_code: Optional[int] = None):
        super().__init__(msg)
        self.status_code = status_code


class RemoteTimeoutError(RemoteApiError):
    """Container polling ran out of attempts before reaching FINISHED."""
