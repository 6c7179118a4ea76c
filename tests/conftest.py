"""Shared fixtures: in-memory storage, fixed clock and a wired CacheService."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from mise_s3_cache.adapters import (
    JsonStatsLedger,
    NoopMetricsAdapter,
    PidFileLockAdapter,
    Sha256Adapter,
    TarGzArchiveAdapter,
)
from mise_s3_cache.core import CacheConfig, CacheService, NotFoundError, ToolVersionRef
from mise_s3_cache.ports.storage import ObjectHead, ObjectInfo
from mise_s3_cache.ports.tool_manager import ActiveVersion

BUCKET = "mise-test-cache"


class FixedClock:
    """Clock that only moves when told to; sleeps are recorded, not slept."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class InMemoryStorage:
    """StoragePort fake with call recording and failure injection."""

    def __init__(self, clock: FixedClock):
        self.clock = clock
        self.objects: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None
        self.fail_remaining = 0
        self.put_delay = 0.0
        self._guard = threading.Lock()
        self._puts_in_flight = 0
        self.max_concurrent_puts = 0

    def fail(self, error: Exception, times: int = 1_000_000) -> None:
        """Make the next `times` calls raise error."""
        self.fail_with = error
        self.fail_remaining = times

    def _call(self, op: str, key: str) -> None:
        with self._guard:
            self.calls.append((op, key))
            if self.fail_with is not None and self.fail_remaining > 0:
                self.fail_remaining -= 1
                raise self.fail_with

    def calls_for(self, op: str) -> list[str]:
        return [key for name, key in self.calls if name == op]

    def seed(self, key: str, body: bytes, age: timedelta = timedelta(0)) -> None:
        self.objects[key] = {
            "body": body,
            "metadata": {},
            "last_modified": self.clock.now() - age,
        }

    def head(self, key: str) -> ObjectHead | None:
        self._call("head", key)
        obj = self.objects.get(key)
        if obj is None:
            return None
        return ObjectHead(
            key=key,
            size=len(obj["body"]),
            etag="",
            last_modified=obj["last_modified"],
            metadata=obj["metadata"],
        )

    def exists(self, key: str) -> bool:
        self._call("exists", key)
        return key in self.objects

    def get(self, key: str) -> bytes:
        self._call("get", key)
        if key not in self.objects:
            raise NotFoundError(f"Object not found: {key}")
        return self.objects[key]["body"]

    def put(
        self,
        key: str,
        body: bytes,
        metadata: dict[str, str] | None = None,
        content_type: str | None = None,
    ) -> None:
        self._call("put", key)
        with self._guard:
            self._puts_in_flight += 1
            self.max_concurrent_puts = max(self.max_concurrent_puts, self._puts_in_flight)
        try:
            if self.put_delay:
                time.sleep(self.put_delay)
            self.objects[key] = {
                "body": bytes(body),
                "metadata": dict(metadata or {}),
                "last_modified": self.clock.now(),
            }
        finally:
            with self._guard:
                self._puts_in_flight -= 1

    def list(self, prefix: str) -> Iterator[ObjectInfo]:
        self._call("list", prefix)
        for key in sorted(self.objects):
            if key.startswith(prefix):
                obj = self.objects[key]
                yield ObjectInfo(key=key, size=len(obj["body"]), last_modified=obj["last_modified"])

    def delete(self, key: str) -> None:
        self._call("delete", key)
        self.objects.pop(key, None)

    def delete_older_than(self, prefix: str, cutoff: datetime) -> list[str]:
        self._call("delete_older_than", prefix)
        expired = [
            key
            for key, obj in self.objects.items()
            if key.startswith(prefix) and obj["last_modified"] < cutoff
        ]
        for key in expired:
            del self.objects[key]
        return sorted(expired)


class RecordingLogger:
    """LoggerPort fake that keeps (level, message, kwargs) tuples."""

    def __init__(self):
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def _record(self, level: str, message: str, **kwargs: Any) -> None:
        self.records.append((level, message, kwargs))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._record("debug", message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._record("info", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._record("warning", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._record("error", message, **kwargs)

    def log_operation(
        self,
        op: str,
        key: str,
        sizes: dict[str, int],
        durations: dict[str, float],
        cache_hit: bool = False,
    ) -> None:
        self._record("info", f"Operation: {op}", key=key, cache_hit=cache_hit)

    def messages(self, level: str) -> list[str]:
        return [message for lvl, message, _ in self.records if lvl == level]


class StaticScope:
    """ScopePort fake declaring a fixed set of tool versions."""

    def __init__(self, *declared: tuple[str, str]):
        self.declared = list(declared)
        self.queries: list[tuple[str, str]] = []

    def is_declared(self, tool: str, version: str) -> bool:
        self.queries.append((tool, version))
        return (tool, version) in self.declared

    def declared_tools(self) -> list[ToolVersionRef]:
        return [ToolVersionRef(tool, version) for tool, version in self.declared]


class FakeToolManager:
    """ToolManagerPort fake installing small directory trees under root."""

    def __init__(self, root: Path, failing: set[str] | None = None):
        self.root = root
        self.failing = failing or set()
        self.installed: list[str] = []
        self.active: list[ActiveVersion] = []
        self._guard = threading.Lock()

    def version(self) -> str:
        return "2024.5.0 linux-x64"

    def install_path(self, tool: str, version: str) -> Path:
        return self.root / tool / version

    def install(self, tool: str, version: str) -> None:
        if tool in self.failing:
            raise RuntimeError(f"mise install {tool}@{version} failed: download error")
        make_install_tree(self.install_path(tool, version), tool)
        with self._guard:
            self.installed.append(f"{tool}@{version}")

    def active_versions(self, cwd: Path | None = None) -> list[ActiveVersion]:
        return list(self.active)


def make_install_tree(root: Path, tool: str = "go") -> Path:
    """Write a small nested install tree."""
    (root / "bin").mkdir(parents=True, exist_ok=True)
    (root / "lib" / "pkg").mkdir(parents=True, exist_ok=True)
    (root / "bin" / tool).write_bytes(b"#!/bin/sh\necho " + tool.encode() + b"\n")
    (root / "bin" / tool).chmod(0o755)
    (root / "lib" / "pkg" / "data.txt").write_text("payload\n" * 100)
    (root / "VERSION").write_text("1.0\n")
    return root


def snapshot(root: Path) -> dict[str, bytes]:
    """Relative path -> content for every file under root."""
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def storage(clock: FixedClock) -> InMemoryStorage:
    return InMemoryStorage(clock)


@pytest.fixture
def logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def make_config(state_dir: Path) -> Callable[..., CacheConfig]:
    def factory(**overrides: Any) -> CacheConfig:
        values: dict[str, Any] = {
            "bucket": BUCKET,
            "cache_dir": state_dir,
            "lock_timeout": 5.0,
            "retry_base_delay": 0.5,
        }
        values.update(overrides)
        return CacheConfig(**values)

    return factory


@pytest.fixture
def make_service(
    storage: InMemoryStorage,
    clock: FixedClock,
    logger: RecordingLogger,
    make_config: Callable[..., CacheConfig],
) -> Callable[..., CacheService]:
    def factory(
        scope: Any = None,
        tool_manager: Any = None,
        **config_overrides: Any,
    ) -> CacheService:
        config = make_config(**config_overrides)
        hasher = Sha256Adapter()
        lock = PidFileLockAdapter(config.lock_dir, poll_interval=0.05)
        return CacheService(
            config=config,
            storage=storage,
            archive=TarGzArchiveAdapter(hasher),
            hasher=hasher,
            lock=lock,
            stats=JsonStatsLedger(config.stats_path, lock, clock, logger),
            clock=clock,
            logger=logger,
            metrics=NoopMetricsAdapter(),
            scope=scope,
            tool_manager=tool_manager,
        )

    return factory


@pytest.fixture
def service(make_service: Callable[..., CacheService]) -> CacheService:
    return make_service()
