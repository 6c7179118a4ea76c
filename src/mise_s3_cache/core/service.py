"""Core CacheService orchestration."""

import json
import shutil
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta
from pathlib import Path
from typing import TypeVar

from .. import __version__
from ..ports import (
    ArchivePort,
    ClockPort,
    HashPort,
    LockPort,
    LoggerPort,
    MetricsPort,
    ScopePort,
    StatsPort,
    StoragePort,
    ToolManagerPort,
)
from .config import CacheConfig
from .errors import (
    CodecError,
    ConfigError,
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
    WarmResult,
)

T = TypeVar("T")

METRIC_PREFIX = "mise_s3_cache"


class CacheService:
    """Synchronizes local tool installs with the remote cache.

    ``check`` and ``restore`` never raise for storage, integrity or extraction
    problems; they report a miss. ``store`` is best effort and reports failures
    in its result. Only malformed tool names or versions raise
    (``ValidationError``), and always before any network call.
    """

    def __init__(
        self,
        config: CacheConfig,
        storage: StoragePort,
        archive: ArchivePort,
        hasher: HashPort,
        lock: LockPort,
        stats: StatsPort,
        clock: ClockPort,
        logger: LoggerPort,
        metrics: MetricsPort,
        scope: ScopePort | None = None,
        tool_manager: ToolManagerPort | None = None,
    ):
        """Initialize service with ports.

        Args:
            scope: Project scope filter. Without one, every tool is in scope.
            tool_manager: Needed by the project-level operations and used to
                stamp the tool manager version into entry metadata.
        """
        self.config = config
        self.storage = storage
        self.archive = archive
        self.hasher = hasher
        self.lock = lock
        self.stats = stats
        self.clock = clock
        self.logger = logger
        self.metrics = metrics
        self.scope = scope
        self.tool_manager = tool_manager
        self._tool_manager_version: str | None = None

    def cache_key(self, tool: str, version: str) -> CacheKey:
        """Validate tool@version and derive its cache key for this host."""
        return CacheKey.derive(self.config.prefix, tool, version)

    @property
    def available(self) -> bool:
        return self.config.available

    # Single-entry operations

    def check(self, tool: str, version: str) -> bool:
        """Check whether tool@version is cached. Unreachable storage reads as absent."""
        key = self.cache_key(tool, version)
        if not self.available:
            self.logger.debug("Cache unavailable", reason=self.config.unavailable_reason)
            return False

        try:
            found = self._with_retry(lambda: self.storage.exists(key.archive_key), "check")
        except StorageError as e:
            self.logger.warning("Cache check failed, treating as miss", key=str(key), error=str(e))
            self.metrics.increment(f"{METRIC_PREFIX}.check.error")
            return False

        self.logger.debug("Cache check", key=str(key), found=found)
        self.metrics.increment(f"{METRIC_PREFIX}.check.{'hit' if found else 'miss'}")
        return found

    def restore(self, tool: str, version: str, dest: Path) -> RestoreResult:
        """Download, verify and extract tool@version into dest.

        dest is left untouched unless the whole entry verifies and extracts.
        """
        key = self.cache_key(tool, version)
        dest = Path(dest)
        if not self.available:
            reason = self.config.unavailable_reason or ""
            return RestoreResult(tool, version, RestoreStatus.UNAVAILABLE, message=reason)

        start_time = self.clock.now()
        self.logger.info("Starting restore", key=str(key), dest=str(dest))

        try:
            data = self._with_retry(lambda: self.storage.get(key.archive_key), "download")
        except NotFoundError:
            return self._restore_failed(
                key, start_time, RestoreStatus.MISS, "not_found", f"{tool}@{version} not in cache"
            )
        except StorageError as e:
            return self._restore_failed(
                key, start_time, RestoreStatus.UNAVAILABLE, "download_failed", str(e)
            )

        try:
            self._verify(key, data)
        except IntegrityMismatchError as e:
            ledger_status = "checksum_missing" if e.expected is None else "checksum_mismatch"
            return self._restore_failed(
                key,
                start_time,
                RestoreStatus.INTEGRITY_FAILURE,
                ledger_status,
                str(e),
                size_bytes=len(data),
            )
        except StorageError as e:
            return self._restore_failed(
                key, start_time, RestoreStatus.UNAVAILABLE, "download_failed", str(e)
            )

        try:
            self.archive.unpack(data, dest)
        except CodecError as e:
            return self._restore_failed(
                key,
                start_time,
                RestoreStatus.EXTRACTION_FAILURE,
                "extraction_failed",
                str(e),
                size_bytes=len(data),
            )

        duration = (self.clock.now() - start_time).total_seconds()
        self.stats.record_restore(
            tool, version, hit=True, status="success", duration=duration, size_bytes=len(data)
        )
        self.logger.log_operation(
            op="restore",
            key=str(key),
            sizes={"archive": len(data)},
            durations={"total": duration},
            cache_hit=True,
        )
        self.metrics.increment(f"{METRIC_PREFIX}.restore.hit")
        self.metrics.timing(f"{METRIC_PREFIX}.restore.duration", duration)
        return RestoreResult(
            tool,
            version,
            RestoreStatus.HIT,
            key=str(key),
            size_bytes=len(data),
            duration=duration,
            message=f"Restored {tool}@{version} to {dest}",
        )

    def store(self, tool: str, version: str, source: Path) -> StoreResult:
        """Pack source and upload it as the cache entry for tool@version.

        Tools the project does not declare are skipped without touching the
        network. Uploads for the same key are serialized across processes.
        """
        key = self.cache_key(tool, version)
        source = Path(source)
        if not self.available:
            return StoreResult(
                tool, version, StoreStatus.UNAVAILABLE, message=self.config.unavailable_reason or ""
            )

        if self.scope is not None and not self.scope.is_declared(tool, version):
            self.logger.debug("Tool not declared, skipping store", tool=tool, version=version)
            return StoreResult(
                tool,
                version,
                StoreStatus.SKIPPED,
                key=str(key),
                message=f"{tool}@{version} is not declared by the project",
            )

        if not source.is_dir():
            return self._store_failed(key, "source_missing", f"Install path missing: {source}")

        try:
            with self.lock.acquire(key.lock_name, self.config.lock_timeout):
                return self._upload_entry(key, source)
        except LockTimeoutError as e:
            self.logger.warning("Store abandoned, key is locked", key=str(key), error=str(e))
            self.stats.record_store(tool, version, "lock_timeout")
            self.metrics.increment(f"{METRIC_PREFIX}.store.lock_timeout")
            return StoreResult(
                tool, version, StoreStatus.LOCK_TIMEOUT, key=str(key), message=str(e)
            )
        except OSError as e:
            # Lock directory not writable
            return self._store_failed(key, "lock_failed", f"Cannot lock {key}: {e}")

    def cleanup(self, max_age_days: float | None = None) -> CleanupResult:
        """Delete cache objects last modified more than max_age_days ago."""
        if max_age_days is None:
            max_age_days = self.config.ttl_seconds / 86400
        if max_age_days < 0:
            raise ValidationError(f"max_age_days must not be negative: {max_age_days}")

        cutoff = self.clock.now() - timedelta(days=max_age_days)
        if not self.available:
            return CleanupResult(cutoff=cutoff, errors=[self.config.unavailable_reason or ""])

        prefix = self.config.tools_prefix
        self.logger.info("Starting cleanup", prefix=prefix, cutoff=cutoff.isoformat())
        try:
            deleted = self._with_retry(
                lambda: self.storage.delete_older_than(prefix, cutoff), "cleanup"
            )
        except StorageError as e:
            self.logger.error("Cleanup failed", prefix=prefix, error=str(e))
            return CleanupResult(cutoff=cutoff, errors=[str(e)])

        entries = {deleted_key.rsplit("/", 1)[0] for deleted_key in deleted}
        self.logger.info("Cleanup complete", objects=len(deleted), entries=len(entries))
        self.metrics.increment(f"{METRIC_PREFIX}.cleanup.deleted", len(deleted))
        return CleanupResult(cutoff=cutoff, deleted_keys=deleted, entries_removed=len(entries))

    def load_stats(self) -> StatsRecord:
        return self.stats.load()

    # Project-level operations

    def declared_tools(self) -> list[ToolVersionRef]:
        """Tools the project declares; invalid declarations are logged and dropped."""
        if self.scope is None:
            return []
        refs = []
        for ref in self.scope.declared_tools():
            try:
                refs.append(ref.validate())
            except ValidationError as e:
                self.logger.warning("Ignoring invalid tool declaration", error=str(e))
        return refs

    def analyze(self) -> AnalysisResult:
        result = AnalysisResult()
        for ref in self.declared_tools():
            if self.check(ref.tool, ref.version):
                result.cached.append(ref)
            else:
                result.missing.append(ref)
        return result

    def restore_all(self, selective: bool = False) -> list[RestoreResult]:
        """Restore every declared tool into its install path.

        With selective, tools missing from the cache are skipped instead of
        being attempted (and counted as misses).
        """
        tool_manager = self._require_tool_manager()
        results = []
        for ref in self.declared_tools():
            if selective and not self.check(ref.tool, ref.version):
                continue
            dest = tool_manager.install_path(ref.tool, ref.version)
            results.append(self.restore(ref.tool, ref.version, dest))
        return results

    def store_all(self) -> list[StoreResult]:
        """Store every declared tool that is installed locally."""
        tool_manager = self._require_tool_manager()
        results = []
        for ref in self.declared_tools():
            source = tool_manager.install_path(ref.tool, ref.version)
            if not source.is_dir():
                self.logger.debug("Not installed, skipping", tool=ref.tool, version=ref.version)
                continue
            results.append(self.store(ref.tool, ref.version, source))
        return results

    def warm(self, max_parallel: int | None = None) -> WarmResult:
        """Install and cache every declared tool that is not cached yet."""
        tool_manager = self._require_tool_manager()
        result = WarmResult()
        refs = self.declared_tools()
        if not refs:
            return result

        missing = []
        for ref in refs:
            if self.check(ref.tool, ref.version):
                result.already_cached.append(ref)
            else:
                missing.append(ref)
        if not missing:
            self.logger.info("All project tools already cached", tools=len(refs))
            return result

        workers = max(1, max_parallel or self.config.parallel_uploads)
        self.logger.info("Warming cache", missing=len(missing), workers=workers)

        def warm_one(ref: ToolVersionRef) -> StoreResult:
            tool_manager.install(ref.tool, ref.version)
            source = tool_manager.install_path(ref.tool, ref.version)
            return self.store(ref.tool, ref.version, source)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(warm_one, ref): ref for ref in missing}
            for future in as_completed(futures):
                ref = futures[future]
                try:
                    store_result = future.result()
                except RuntimeError as e:
                    self.logger.warning("Install failed", tool=str(ref), error=str(e))
                    result.failed[str(ref)] = str(e)
                    continue
                if store_result.ok:
                    result.installed.append(ref)
                else:
                    result.failed[str(ref)] = store_result.message or store_result.status.value
        return result

    def cleanup_temp_files(self) -> list[Path]:
        """Remove stale locks and leftovers in the local temp directory."""
        removed = list(self.lock.cleanup_stale())
        temp_dir = self.config.temp_dir
        if temp_dir.is_dir():
            for path in temp_dir.iterdir():
                try:
                    if path.is_dir() and not path.is_symlink():
                        shutil.rmtree(path)
                    else:
                        path.unlink()
                except OSError as e:
                    self.logger.warning("Failed to remove temp file", path=str(path), error=str(e))
                    continue
                removed.append(path)
        self.logger.info("Cleaned up temporary files", count=len(removed))
        return removed

    # Internals

    def _with_retry(self, operation: Callable[[], T], what: str) -> T:
        """Run a storage call, retrying unavailability with exponential backoff."""
        attempts = max(1, self.config.retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return operation()
            except StorageUnavailableError as e:
                if attempt == attempts:
                    raise
                delay = self.config.retry_base_delay * 2 ** (attempt - 1)
                self.logger.debug(
                    "Retrying storage call", op=what, attempt=attempt, delay=delay, error=str(e)
                )
                self.clock.sleep(delay)
        raise AssertionError("unreachable")

    def _fetch_checksum(self, key: CacheKey) -> str | None:
        try:
            raw = self._with_retry(lambda: self.storage.get(key.checksum_key), "checksum")
        except NotFoundError:
            return None
        # Accept both a bare digest and sha256sum's "<digest>  <name>" form
        tokens = raw.decode("utf-8", errors="replace").split()
        return tokens[0].lower() if tokens else None

    def _verify(self, key: CacheKey, data: bytes) -> None:
        """Compare downloaded bytes with the stored checksum.

        Entries without a checksum are trusted unless require_checksum is set.
        """
        expected = self._fetch_checksum(key)
        actual = self.hasher.sha256_bytes(data)
        if expected is None:
            if self.config.require_checksum:
                raise IntegrityMismatchError("Cache entry has no checksum", actual=actual)
            self.logger.warning("Cache entry has no checksum, trusting archive", key=str(key))
            return
        if expected != actual:
            self.metrics.increment(f"{METRIC_PREFIX}.restore.checksum_mismatch")
            raise IntegrityMismatchError(
                f"SHA256 mismatch: expected {expected}, got {actual}",
                expected=expected,
                actual=actual,
            )

    def _put(
        self, object_key: str, body: bytes, metadata: dict[str, str] | None, content_type: str
    ) -> None:
        try:
            self._with_retry(
                lambda: self.storage.put(object_key, body, metadata, content_type), "upload"
            )
        except StorageError as e:
            raise UploadError(f"Failed to upload {object_key}: {e}") from e

    def _upload_entry(self, key: CacheKey, source: Path) -> StoreResult:
        tool, version = key.tool, key.version
        start_time = self.clock.now()

        try:
            if self._with_retry(lambda: self.storage.exists(key.archive_key), "check"):
                self.logger.info("Already cached, skipping upload", key=str(key))
                return StoreResult(
                    tool, version, StoreStatus.SKIPPED, key=str(key), message="Already cached"
                )
        except StorageError as e:
            return self._store_failed(key, "upload_failed", str(e))

        try:
            packed = self.archive.pack(source, root_name=f"{tool}-{version}")
        except CodecError as e:
            return self._store_failed(key, "archive_failed", str(e))

        metadata = CacheMetadata(
            tool=tool,
            version=version,
            platform=key.platform,
            arch=key.arch,
            created_at=self.clock.now(),
            size_bytes=packed.size,
            checksum=packed.checksum,
            tool_manager_version=self._manager_version(),
        )

        self.logger.info("Uploading cache entry", key=str(key), size=packed.size)
        # Order matters: archive, then checksum, then metadata
        try:
            self._put(
                key.archive_key,
                packed.data,
                {"sha256": packed.checksum, "created-by": f"mise-s3-cache/{__version__}"},
                "application/gzip",
            )
            self._put(
                key.checksum_key,
                f"{packed.checksum}  {key.archive_name}\n".encode(),
                None,
                "text/plain",
            )
            self._put(
                key.metadata_key,
                json.dumps(metadata.to_dict(), indent=2).encode(),
                None,
                "application/json",
            )
        except UploadError as e:
            return self._store_failed(key, "upload_failed", str(e))

        duration = (self.clock.now() - start_time).total_seconds()
        self.stats.record_store(tool, version, "stored", size_bytes=packed.size)
        self.logger.log_operation(
            op="store",
            key=str(key),
            sizes={"archive": packed.size},
            durations={"total": duration},
        )
        self.metrics.increment(f"{METRIC_PREFIX}.store.stored")
        self.metrics.timing(f"{METRIC_PREFIX}.store.duration", duration)
        return StoreResult(
            tool,
            version,
            StoreStatus.STORED,
            key=str(key),
            size_bytes=packed.size,
            checksum=packed.checksum,
            message=f"Cached {tool}@{version}",
        )

    def _restore_failed(
        self,
        key: CacheKey,
        start_time: datetime,
        status: RestoreStatus,
        ledger_status: str,
        message: str,
        size_bytes: int = 0,
    ) -> RestoreResult:
        duration = (self.clock.now() - start_time).total_seconds()
        if status is RestoreStatus.MISS:
            self.logger.info("Cache miss", key=str(key))
        else:
            self.logger.warning("Restore failed", key=str(key), status=ledger_status, error=message)
            self.metrics.timing(
                f"{METRIC_PREFIX}.restore.failure.duration",
                duration,
                tags={"status": ledger_status},
            )
        self.stats.record_restore(
            key.tool,
            key.version,
            hit=False,
            status=ledger_status,
            duration=duration,
            size_bytes=size_bytes,
        )
        self.metrics.increment(f"{METRIC_PREFIX}.restore.{status.value}")
        return RestoreResult(
            key.tool,
            key.version,
            status,
            key=str(key),
            size_bytes=size_bytes,
            duration=duration,
            message=message,
        )

    def _store_failed(self, key: CacheKey, ledger_status: str, message: str) -> StoreResult:
        self.logger.warning("Store failed", key=str(key), status=ledger_status, error=message)
        self.stats.record_store(key.tool, key.version, ledger_status)
        self.metrics.increment(f"{METRIC_PREFIX}.store.failure")
        return StoreResult(
            key.tool, key.version, StoreStatus.UPLOAD_FAILURE, key=str(key), message=message
        )

    def _manager_version(self) -> str:
        if self._tool_manager_version is None:
            self._tool_manager_version = (
                self.tool_manager.version() if self.tool_manager is not None else "unknown"
            )
        return self._tool_manager_version

    def _require_tool_manager(self) -> ToolManagerPort:
        if self.tool_manager is None:
            raise ConfigError("This operation needs a tool manager")
        return self.tool_manager
