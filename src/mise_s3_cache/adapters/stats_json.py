"""JSON file stats ledger adapter."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from ..core.errors import LockTimeoutError
from ..core.models import StatsRecord
from ..ports.clock import ClockPort
from ..ports.lock import LockPort
from ..ports.logger import LoggerPort
from ..ports.stats import StatsPort

STATS_LOCK_NAME = "stats"
STATS_LOCK_TIMEOUT = 5.0
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def empty_document() -> dict[str, Any]:
    return {
        "cache_hits": 0,
        "cache_misses": 0,
        "total_downloads": 0,
        "total_savings_bytes": 0,
        "total_uploads": 0,
        "upload_failures": 0,
        "tools": {},
    }


class JsonStatsLedger(StatsPort):
    """Stats ledger kept as a single JSON document on local disk.

    Every update is a read-modify-write under the ``stats`` lock, and the new
    document replaces the old one atomically. Fields this version does not
    know about are carried through untouched.

    Ledger problems never propagate: a stats update that cannot be written is
    logged and dropped.
    """

    def __init__(
        self,
        path: Path,
        lock: LockPort,
        clock: ClockPort,
        logger: LoggerPort,
        lock_timeout: float = STATS_LOCK_TIMEOUT,
    ):
        self.path = Path(path)
        self.lock = lock
        self.clock = clock
        self.logger = logger
        self.lock_timeout = lock_timeout

    def record_restore(
        self,
        tool: str,
        version: str,
        hit: bool,
        status: str,
        duration: float = 0.0,
        size_bytes: int = 0,
    ) -> None:
        """Count a restore as a hit or a miss."""
        timestamp = self._timestamp()

        def apply(doc: dict[str, Any]) -> None:
            entry = _version_entry(doc, tool, version)
            doc["total_downloads"] = _counter(doc, "total_downloads") + 1
            entry["status"] = status
            if hit:
                doc["cache_hits"] = _counter(doc, "cache_hits") + 1
                doc["total_savings_bytes"] = _counter(doc, "total_savings_bytes") + size_bytes
                hits = _counter(entry, "hit_count") + 1
                total_time = _seconds(entry, "total_download_time") + duration
                entry["last_used"] = timestamp
                entry["hit_count"] = hits
                entry["total_download_time"] = round(total_time, 3)
                entry["avg_download_time"] = round(total_time / hits, 3)
                entry["size_bytes"] = size_bytes
            else:
                doc["cache_misses"] = _counter(doc, "cache_misses") + 1
                entry["last_missed"] = timestamp
                entry["miss_count"] = _counter(entry, "miss_count") + 1

        self._update(apply)

    def record_store(self, tool: str, version: str, status: str, size_bytes: int = 0) -> None:
        """Count an upload attempt. Skipped stores are not recorded."""
        timestamp = self._timestamp()

        def apply(doc: dict[str, Any]) -> None:
            entry = _version_entry(doc, tool, version)
            entry["store_status"] = status
            if status == "stored":
                doc["total_uploads"] = _counter(doc, "total_uploads") + 1
                entry["last_stored"] = timestamp
                if size_bytes:
                    entry["size_bytes"] = size_bytes
            else:
                doc["upload_failures"] = _counter(doc, "upload_failures") + 1

        self._update(apply)

    def load(self) -> StatsRecord:
        """Read the ledger; a missing or unreadable document reads as empty."""
        return StatsRecord.from_dict(self._read())

    def _update(self, apply: Any) -> None:
        try:
            with self.lock.acquire(STATS_LOCK_NAME, self.lock_timeout):
                doc = self._read()
                apply(doc)
                self._write(doc)
        except LockTimeoutError as e:
            self.logger.warning("Stats update dropped", reason=str(e))
        except (OSError, TypeError, ValueError) as e:
            self.logger.warning("Failed to update stats", path=str(self.path), error=str(e))

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return empty_document()
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            self.logger.warning("Ignoring unreadable stats file", path=str(self.path), error=str(e))
            return empty_document()
        if not isinstance(data, dict):
            self.logger.warning("Ignoring malformed stats file", path=str(self.path))
            return empty_document()
        for name, value in empty_document().items():
            data.setdefault(name, value)
        return data

    def _write(self, doc: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".stats-", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(doc, f, indent=2, sort_keys=True)
                f.write("\n")
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _timestamp(self) -> str:
        return self.clock.now().strftime(TIMESTAMP_FORMAT)


def _version_entry(doc: dict[str, Any], tool: str, version: str) -> dict[str, Any]:
    tools = doc.get("tools")
    if not isinstance(tools, dict):
        tools = doc["tools"] = {}
    versions = tools.get(tool)
    if not isinstance(versions, dict):
        versions = tools[tool] = {}
    entry = versions.get(version)
    if not isinstance(entry, dict):
        entry = versions[version] = {}
    return entry


def _counter(data: dict[str, Any], name: str) -> int:
    try:
        return int(data.get(name) or 0)
    except (TypeError, ValueError):
        return 0


def _seconds(data: dict[str, Any], name: str) -> float:
    try:
        return float(data.get(name) or 0.0)
    except (TypeError, ValueError):
        return 0.0
