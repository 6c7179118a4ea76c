"""Remote usage statistics for the cache bucket.

This module contains read-only reporting operations:
- get_cache_usage
"""

from typing import TYPE_CHECKING

from ..client_models import CacheUsage, EntryUsage
from ..core.errors import StorageError
from ..ports.storage import ObjectInfo

if TYPE_CHECKING:
    from ..core.service import CacheService


def _collect_objects(service: "CacheService", prefix: str) -> tuple[list[ObjectInfo], str | None]:
    """List everything under prefix, keeping what was read before a failure.

    Returns:
        Tuple of (objects, error message or None)
    """
    objects: list[ObjectInfo] = []
    try:
        for obj in service.storage.list(prefix):
            objects.append(obj)
    except StorageError as e:
        if not objects:
            service.logger.error("Failed to list cache objects", prefix=prefix, error=str(e))
        else:
            service.logger.warning(
                "Listing interrupted, returning partial results",
                objects=len(objects),
                error=str(e),
            )
        return objects, str(e)
    return objects, None


def get_cache_usage(service: "CacheService") -> CacheUsage:
    """Summarize object count and size of the remote cache, per entry and per tool.

    Args:
        service: CacheService whose storage and prefix are inspected

    Returns:
        CacheUsage; ``partial`` is set when the listing failed part way
    """
    usage = CacheUsage()
    if not service.available:
        usage.error = service.config.unavailable_reason
        return usage

    prefix = service.config.tools_prefix
    objects, error = _collect_objects(service, prefix)
    usage.error = error
    usage.partial = error is not None and bool(objects)

    entries: dict[str, EntryUsage] = {}
    for obj in objects:
        usage.object_count += 1
        usage.total_size += obj.size

        # <tool>/<version>/<platform-arch>/<object>
        parts = obj.key[len(prefix) :].split("/")
        if len(parts) < 4:
            continue
        tool, version, platform = parts[0], parts[1], parts[2]
        entry_key = f"{prefix}{tool}/{version}/{platform}"
        entry = entries.get(entry_key)
        if entry is None:
            entry = entries[entry_key] = EntryUsage(
                key=entry_key, tool=tool, version=version, platform=platform
            )
        entry.size += obj.size
        entry.object_count += 1
        if entry.last_modified is None or obj.last_modified > entry.last_modified:
            entry.last_modified = obj.last_modified
        usage.tools[tool] = usage.tools.get(tool, 0) + obj.size

    usage.entries = sorted(entries.values(), key=lambda e: e.key)
    return usage
