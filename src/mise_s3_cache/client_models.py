"""Models returned by client operations."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class EntryUsage:
    """Remote footprint of one cache entry."""

    key: str
    tool: str
    version: str
    platform: str
    size: int = 0
    object_count: int = 0
    last_modified: datetime | None = None


@dataclass
class CacheUsage:
    """Remote footprint of the whole cache."""

    object_count: int = 0
    total_size: int = 0
    entries: list[EntryUsage] = field(default_factory=list)
    tools: dict[str, int] = field(default_factory=dict)
    partial: bool = False
    error: str | None = None

    @property
    def entry_count(self) -> int:
        return len(self.entries)
