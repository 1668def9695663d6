"""Custom exceptions for the minute velocity recorder.

Every recorder error carries the process exit status used when it ends a
run. Errors with exit_code 0 are never fatal: the cadence controllers log
them and carry on.
"""


class RecorderError(Exception):
    """Base exception for all recorder errors."""

    exit_code = 1


class FetchError(RecorderError):
    """Raised when the upstream source is unreachable or returns malformed data."""

    exit_code = 0


class InvalidSample(RecorderError):
    """Raised when a fetched value or device reading is NaN or infinite."""

    exit_code = 0


class OutOfOrderSample(RecorderError):
    """Raised when a sample is older than the last accepted record."""

    exit_code = 0


class DeviceSessionError(RecorderError):
    """Raised when the device driver fails to open, configure or start a session."""

    exit_code = 3


class PersistenceError(RecorderError):
    """Raised when a record cannot be written to the CSV log."""

    exit_code = 4
