"""Errors raised by a synchronization pass. Every one of them is fatal to the run."""


class SyncError(Exception):
    """Base class for all errors that abort a reconciliation pass."""


class NetworkError(SyncError):
    """Transport failure, or a non-success response to a download request."""


class ProtocolError(SyncError):
    """Manifest response with a bad status or unexpected shape, or content that fails verification."""


class FileSystemError(SyncError):
    """Local file could not be opened, read, written, replaced or deleted."""


class DeadlineExceeded(SyncError):
    """The fetch phase did not complete before its deadline."""


class TaskCancelled(SyncError):
    """A task stopped because a sibling in its group failed first."""
