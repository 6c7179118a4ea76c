"""Core domain for mise-s3-cache."""

from .config import CacheConfig
from .errors import (
    CacheError,
    CodecError,
    ConfigError,
    ExtractionError,
    IntegrityMismatchError,
    LockTimeoutError,
    NotFoundError,
    StorageError,
    StorageUnavailableError,
    UploadError,
    ValidationError,
)
from .models import (
    AnalysisResult,
    CacheKey,
    CacheMetadata,
    CleanupResult,
    RestoreResult,
    RestoreStatus,
    StatsRecord,
    StoreResult,
    StoreStatus,
    ToolVersionRef,
    VersionUsage,
    WarmResult,
)
from .service import CacheService

__all__ = [
    "AnalysisResult",
    "CacheConfig",
    "CacheError",
    "CacheKey",
    "CacheMetadata",
    "CacheService",
    "CleanupResult",
    "CodecError",
    "ConfigError",
    "ExtractionError",
    "IntegrityMismatchError",
    "LockTimeoutError",
    "NotFoundError",
    "RestoreResult",
    "RestoreStatus",
    "StatsRecord",
    "StorageError",
    "StorageUnavailableError",
    "StoreResult",
    "StoreStatus",
    "ToolVersionRef",
    "UploadError",
    "ValidationError",
    "VersionUsage",
    "WarmResult",
]
