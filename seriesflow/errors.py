"""Error taxonomy for the series store and its callers."""
from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    TRANSIENT = "transient"
    OTHER = "other"


class StoreError(Exception):
    """Error raised by a time-series backend, tagged with its kind."""

    kind = ErrorKind.OTHER

    def __init__(self, message: str, key: str = None):
        super().__init__(message)
        self.key = key


class SeriesNotFound(StoreError):
    kind = ErrorKind.NOT_FOUND


class SeriesAlreadyExists(StoreError):
    kind = ErrorKind.ALREADY_EXISTS


class StoreUnavailable(StoreError):
    kind = ErrorKind.TRANSIENT


class InvalidRange(ValueError):
    """Requested range is empty or unparsable (client error)."""


class SampleTimeout(TimeoutError):
    """Sample source did not answer within the read timeout."""
