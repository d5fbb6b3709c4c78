"""
Exceptions raised by the aggregation pipeline.
"""


class AwgHubError(Exception):
    """Base class for pipeline errors."""
    pass


class DataSourceError(AwgHubError):
    """Raised when the snapshot or event store cannot be queried."""
    pass


class StorageWriteError(AwgHubError):
    """Raised when an upsert into the summary or totals tables fails."""
    pass


class SnapshotValidationError(AwgHubError, ValueError):
    """Raised when a raw telemetry row cannot be parsed into a RawSnapshot."""

    def __init__(self, message: str, row=None):
        super().__init__(message)
        self.row = row
