"""Error types raised by the tracker core and the mirror engine."""
from __future__ import annotations


class TrackerError(Exception):
    """Base exception for every error the core raises."""


class InvalidInputError(TrackerError, ValueError):
    """Raised when user input is empty or malformed."""


class DuplicateNameError(TrackerError):
    """Raised when an activity name collides with an existing one."""

    def __init__(self, name: str) -> None:
        super().__init__(f"An activity named '{name}' already exists")
        self.name = name


class NotFoundError(TrackerError, LookupError):
    """Raised when a referenced id does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"No {kind} found for id={identifier}")
        self.kind = kind
        self.identifier = identifier


class AlreadyRunningError(TrackerError):
    """Raised when a timer is started while another session runs."""


class NotRunningError(TrackerError):
    """Raised when the timer is stopped while idle."""


class ActivityInUseError(TrackerError):
    """Raised when deleting the activity of the running session."""


class StorageUnavailableError(TrackerError):
    """Raised when the local store cannot be read or written."""


class MirrorError(TrackerError):
    """Base exception for mirror failures. Never escapes the sync engine."""


class MirrorUnavailableError(MirrorError):
    """Raised when the mirror cannot be reached or an operation fails."""


class MirrorDocumentMissingError(MirrorError):
    """Raised when the mirror document was deleted out-of-band."""


__all__ = [
    "ActivityInUseError",
    "AlreadyRunningError",
    "DuplicateNameError",
    "InvalidInputError",
    "MirrorDocumentMissingError",
    "MirrorError",
    "MirrorUnavailableError",
    "NotFoundError",
    "NotRunningError",
    "StorageUnavailableError",
    "TrackerError",
]
