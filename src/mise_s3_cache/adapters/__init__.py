"""Adapters for mise-s3-cache."""

from .archive_tar import TarGzArchiveAdapter
from .clock_utc import UtcClockAdapter
from .hash_sha256 import Sha256Adapter
from .lock_pidfile import PidFileLockAdapter
from .logger_std import StdLoggerAdapter
from .metrics import LoggingMetricsAdapter, NoopMetricsAdapter, create_metrics
from .scope_mise import MiseProjectScope
from .stats_json import JsonStatsLedger
from .storage_s3 import ProbeResult, S3StorageAdapter
from .tool_manager_mise import MiseToolManager

__all__ = [
    "JsonStatsLedger",
    "LoggingMetricsAdapter",
    "MiseProjectScope",
    "MiseToolManager",
    "NoopMetricsAdapter",
    "PidFileLockAdapter",
    "ProbeResult",
    "S3StorageAdapter",
    "Sha256Adapter",
    "StdLoggerAdapter",
    "TarGzArchiveAdapter",
    "UtcClockAdapter",
    "create_metrics",
]
