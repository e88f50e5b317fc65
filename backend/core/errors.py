"""
Vision History - Storage Errors

Every failure of the storage layer reaches the caller as one of these.
"""

from __future__ import annotations


class VisionStorageError(Exception):
    """Base class for storage and history errors."""


class InvalidInput(VisionStorageError, ValueError):
    """Input rejected before any storage interaction."""


class PersistenceFailure(VisionStorageError):
    """A write transaction could not commit; nothing from the attempt remains."""


class NotFound(VisionStorageError, LookupError):
    """Record doesn't exist, or exists but belongs to another user."""
