from __future__ import annotations


class TrackerError(Exception):
    """Base class for tracker failures that carry a user-facing message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TrackerError):
    """Input rejected before any state changed (bad date, future start date, ...)."""


class FormatError(TrackerError):
    """Import payload is not a JSON list of dates."""


class StorageError(TrackerError):
    """The record store could not load or save a user's record."""


class AuthError(TrackerError):
    """No user identity is available for the requested operation."""


class SaveInProgressError(TrackerError):
    """A save was requested while another save for the same session is still running."""
