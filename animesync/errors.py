"""Exception types raised by the tracking engine."""

from __future__ import annotations


class AnimeSyncError(Exception):
    """Base class for engine errors."""


class ValidationError(AnimeSyncError):
    """Raised when a backup field or user supplied value is malformed."""


class NotFoundError(AnimeSyncError):
    """Raised when a mutation targets an id that is not present."""


class StorageError(AnimeSyncError):
    """Raised when the storage adapter fails to persist a snapshot."""


class SchedulingError(AnimeSyncError):
    """Raised for malformed weekday data; always filtered by the scheduler."""


class ConfigurationError(AnimeSyncError):
    """Raised when a required collaborator is missing at initialisation."""
