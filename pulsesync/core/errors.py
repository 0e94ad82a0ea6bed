"""PulseSync — Error Taxonomy.

StorageError and ValidationError abort or drop a unit of work.
NetworkError is recorded per batch/day and never fatal to a sync.
"""


class PulseSyncError(Exception):
    """Base class for all engine errors."""


class StorageError(PulseSyncError):
    """Raised when the local store fails to read or write."""

    def __init__(self, message: str, operation: str = ""):
        self.operation = operation
        super().__init__(message)


class NetworkError(PulseSyncError):
    """Raised when a remote call times out, fails to connect, or is rejected."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        timeout: bool = False,
        attempts: int = 1,
    ):
        self.status_code = status_code
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(message)


class ValidationError(PulseSyncError):
    """Raised for a malformed record. The record is dropped, the batch proceeds."""

    def __init__(self, message: str, record_id: str = ""):
        self.record_id = record_id
        super().__init__(message)


class SyncInProgressError(PulseSyncError):
    """Raised when a full sync is requested while another one is running."""

    def __init__(self, message: str = "sync already in progress"):
        super().__init__(message)
