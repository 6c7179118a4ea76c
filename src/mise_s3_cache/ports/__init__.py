"""Port interfaces."""

from .archive import ArchivePort, PackedArchive
from .clock import ClockPort
from .hash import HashPort
from .lock import LockHandle, LockPort
from .logger import LoggerPort
from .metrics import MetricsPort
from .scope import ScopePort
from .stats import StatsPort
from .storage import ObjectHead, ObjectInfo, StoragePort
from .tool_manager import ActiveVersion, ToolManagerPort

__all__ = [
    "ActiveVersion",
    "ArchivePort",
    "ClockPort",
    "HashPort",
    "LockHandle",
    "LockPort",
    "LoggerPort",
    "MetricsPort",
    "ObjectHead",
    "ObjectInfo",
    "PackedArchive",
    "ScopePort",
    "StatsPort",
    "StoragePort",
    "ToolManagerPort",
]
