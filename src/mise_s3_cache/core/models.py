"""Core domain models."""

import platform
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import ValidationError

TOOL_NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,100}")
VERSION_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._+:~-]*")
MAX_VERSION_LENGTH = 128

ARCHIVE_SUFFIX = ".tar.gz"
CHECKSUM_NAME = "checksum.sha256"
METADATA_NAME = "metadata.json"


def host_platform() -> tuple[str, str]:
    """Return (lower-cased OS name, machine architecture) of this host."""
    return platform.system().lower() or "unknown", platform.machine() or "unknown"


@dataclass(frozen=True)
class ToolVersionRef:
    """A (tool, version) pair as declared by a project."""

    tool: str
    version: str

    def validate(self) -> "ToolVersionRef":
        if not isinstance(self.tool, str) or not TOOL_NAME_PATTERN.fullmatch(self.tool):
            raise ValidationError(f"Invalid tool name: {self.tool!r}")
        if (
            not isinstance(self.version, str)
            or len(self.version) > MAX_VERSION_LENGTH
            or not VERSION_PATTERN.fullmatch(self.version)
        ):
            raise ValidationError(f"Invalid version for {self.tool}: {self.version!r}")
        return self

    def __str__(self) -> str:
        return f"{self.tool}@{self.version}"


@dataclass(frozen=True)
class CacheKey:
    """Storage location of one (tool, version, platform, arch) cache slot."""

    prefix: str
    tool: str
    version: str
    platform: str
    arch: str

    @classmethod
    def derive(
        cls,
        prefix: str,
        tool: str,
        version: str,
        platform: str | None = None,
        arch: str | None = None,
    ) -> "CacheKey":
        """Build the key for a tool version on this (or the given) host."""
        ref = ToolVersionRef(tool, version).validate()
        if platform is None or arch is None:
            host_os, host_arch = host_platform()
            platform = platform or host_os
            arch = arch or host_arch
        return cls(
            prefix=prefix.strip("/"),
            tool=ref.tool,
            version=ref.version,
            platform=platform,
            arch=arch,
        )

    @property
    def path(self) -> str:
        base = f"tools/{self.tool}/{self.version}/{self.platform}-{self.arch}"
        return f"{self.prefix}/{base}" if self.prefix else base

    @property
    def archive_name(self) -> str:
        return f"{self.tool}-{self.version}{ARCHIVE_SUFFIX}"

    @property
    def archive_key(self) -> str:
        return f"{self.path}/{self.archive_name}"

    @property
    def checksum_key(self) -> str:
        return f"{self.path}/{CHECKSUM_NAME}"

    @property
    def metadata_key(self) -> str:
        return f"{self.path}/{METADATA_NAME}"

    @property
    def lock_name(self) -> str:
        """Filesystem-safe name used for the store lock of this key."""
        return re.sub(r"[^A-Za-z0-9._-]", "_", self.path.replace("/", "__"))

    def __str__(self) -> str:
        return self.path


@dataclass
class CacheMetadata:
    """Metadata document stored next to each archive."""

    tool: str
    version: str
    platform: str
    arch: str
    created_at: datetime
    size_bytes: int
    checksum: str
    tool_manager_version: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.strftime("%Y-%m-%dT%H:%M:%SZ")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheMetadata":
        created = str(data.get("created_at", ""))
        return cls(
            tool=str(data["tool"]),
            version=str(data["version"]),
            platform=str(data.get("platform", "unknown")),
            arch=str(data.get("arch", "unknown")),
            created_at=datetime.fromisoformat(created.replace("Z", "+00:00")),
            size_bytes=int(data.get("size_bytes", 0)),
            checksum=str(data.get("checksum", "")),
            tool_manager_version=str(data.get("tool_manager_version", "unknown")),
        )


class RestoreStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    INTEGRITY_FAILURE = "integrity_failure"
    EXTRACTION_FAILURE = "extraction_failure"
    UNAVAILABLE = "unavailable"


class StoreStatus(str, Enum):
    STORED = "stored"
    SKIPPED = "skipped"
    LOCK_TIMEOUT = "lock_timeout"
    UPLOAD_FAILURE = "upload_failure"
    UNAVAILABLE = "unavailable"


@dataclass
class RestoreResult:
    """Outcome of a restore."""

    tool: str
    version: str
    status: RestoreStatus
    key: str | None = None
    size_bytes: int = 0
    duration: float = 0.0
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is RestoreStatus.HIT


@dataclass
class StoreResult:
    """Outcome of a store."""

    tool: str
    version: str
    status: StoreStatus
    key: str | None = None
    size_bytes: int = 0
    checksum: str | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (StoreStatus.STORED, StoreStatus.SKIPPED)


@dataclass
class CleanupResult:
    """Outcome of removing expired cache objects."""

    cutoff: datetime
    deleted_keys: list[str] = field(default_factory=list)
    entries_removed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class AnalysisResult:
    """Cache status of the tools a project declares."""

    cached: list[ToolVersionRef] = field(default_factory=list)
    missing: list[ToolVersionRef] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.cached) + len(self.missing)

    @property
    def hit_rate(self) -> float:
        return len(self.cached) / self.total if self.total else 0.0


@dataclass
class WarmResult:
    """Outcome of warming the cache for a project."""

    already_cached: list[ToolVersionRef] = field(default_factory=list)
    installed: list[ToolVersionRef] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class VersionUsage:
    """Ledger entry for one tool version."""

    status: str = ""
    last_used: str | None = None
    last_missed: str | None = None
    last_stored: str | None = None
    hit_count: int = 0
    miss_count: int = 0
    avg_download_time: float = 0.0
    size_bytes: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VersionUsage":
        return cls(
            status=str(data.get("status", "")),
            last_used=data.get("last_used"),
            last_missed=data.get("last_missed"),
            last_stored=data.get("last_stored"),
            hit_count=_as_int(data.get("hit_count")),
            miss_count=_as_int(data.get("miss_count")),
            avg_download_time=_as_float(data.get("avg_download_time")),
            size_bytes=_as_int(data.get("size_bytes")),
        )


@dataclass
class StatsRecord:
    """Read-only view of the stats ledger document. Unknown fields are ignored."""

    cache_hits: int = 0
    cache_misses: int = 0
    total_downloads: int = 0
    total_savings_bytes: int = 0
    total_uploads: int = 0
    upload_failures: int = 0
    tools: dict[str, dict[str, VersionUsage]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatsRecord":
        tools: dict[str, dict[str, VersionUsage]] = {}
        raw_tools = data.get("tools")
        if isinstance(raw_tools, dict):
            for tool, versions in raw_tools.items():
                if not isinstance(versions, dict):
                    continue
                tools[tool] = {
                    version: VersionUsage.from_dict(entry)
                    for version, entry in versions.items()
                    if isinstance(entry, dict)
                }
        return cls(
            cache_hits=_as_int(data.get("cache_hits")),
            cache_misses=_as_int(data.get("cache_misses")),
            total_downloads=_as_int(data.get("total_downloads")),
            total_savings_bytes=_as_int(data.get("total_savings_bytes")),
            total_uploads=_as_int(data.get("total_uploads")),
            upload_failures=_as_int(data.get("upload_failures")),
            tools=tools,
        )

    @property
    def hit_rate(self) -> float:
        return self.cache_hits / self.total_downloads if self.total_downloads else 0.0


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        return float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0
