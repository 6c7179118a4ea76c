"""Core domain errors."""


class CacheError(Exception):
    """Base error for all cache operations."""


class ValidationError(CacheError):
    """Tool name or version failed validation."""


class ConfigError(CacheError):
    """Configuration file could not be read or parsed."""


class StorageError(CacheError):
    """Base error for object storage failures."""


class NotFoundError(StorageError):
    """Object not found."""


class StorageUnavailableError(StorageError):
    """Storage backend unreachable, timed out or refused the request."""


class UploadError(StorageError):
    """One of the objects of a cache entry could not be written."""


class CodecError(CacheError):
    """Archive could not be produced or read."""


class ExtractionError(CodecError):
    """Archive could not be extracted into its destination."""


class IntegrityMismatchError(CacheError):
    """Downloaded archive does not match its recorded checksum.

    expected is None when the entry carries no checksum at all.
    """

    def __init__(self, message: str, expected: str | None = None, actual: str | None = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class LockTimeoutError(CacheError):
    """Lock could not be acquired before the timeout expired."""
