"""PID-file lock adapter."""

import os
import re
import time
import uuid
from collections.abc import Callable
from pathlib import Path
from types import TracebackType

from ..core.errors import LockTimeoutError
from ..ports.lock import LockPort

POLL_INTERVAL_SECONDS = 1.0
LOCK_SUFFIX = ".lock"
RECLAIM_SUFFIX = ".reclaim"
# A lock file still without owner after this long was abandoned mid-write
UNOWNED_GRACE_SECONDS = 10.0


def pid_alive(pid: int) -> bool:
    """Check whether a process with this pid exists."""
    if pid <= 0:
        return False
    if os.name == "nt":
        # No cheap liveness probe; never treat a Windows lock as stale
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OverflowError:
        return False
    return True


class PidFileLock:
    """Handle for a held lock file; released on context exit."""

    def __init__(self, name: str, path: Path, token: str):
        self.name = name
        self.path = path
        self.token = token
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Remove the lock file if this handle still owns it."""
        if self._released:
            return
        self._released = True
        owner = _read_owner(self.path)
        if owner is not None and owner[1] == self.token:
            self.path.unlink(missing_ok=True)

    def __enter__(self) -> "PidFileLock":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"PidFileLock(name={self.name!r}, path={str(self.path)!r})"


class PidFileLockAdapter(LockPort):
    """Cross-process lock built on exclusive creation of a file holding the owner pid.

    A lock whose recorded owner no longer exists is stale and is reclaimed
    on the next attempt instead of waiting for the timeout.
    Reclaiming runs under a second exclusively created file so only one
    waiter at a time decides a lock is stale and removes it.
    """

    def __init__(
        self,
        lock_dir: Path,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.lock_dir = Path(lock_dir)
        self.poll_interval = poll_interval
        self._sleep = sleep

    def path_for(self, name: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9._-]", "_", name)
        return self.lock_dir / f"{safe}{LOCK_SUFFIX}"

    def acquire(self, name: str, timeout: float) -> PidFileLock:
        """Acquire the named lock, polling every poll_interval seconds up to timeout."""
        path = self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        token = uuid.uuid4().hex
        deadline = time.monotonic() + max(0.0, timeout)

        while True:
            if self._try_create(path, token):
                return PidFileLock(name, path, token)

            if self._reclaim_if_stale(path) and self._try_create(path, token):
                return PidFileLock(name, path, token)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                owner = _read_owner(path)
                holder = f" (held by pid {owner[0]})" if owner else ""
                raise LockTimeoutError(
                    f"Timed out after {timeout}s waiting for lock {name}{holder}"
                )
            self._sleep(min(self.poll_interval, remaining))

    def cleanup_stale(self) -> list[Path]:
        """Remove lock files whose owners are gone."""
        if not self.lock_dir.is_dir():
            return []
        return [
            path for path in self.lock_dir.glob(f"*{LOCK_SUFFIX}") if self._reclaim_if_stale(path)
        ]

    @staticmethod
    def _try_create(path: Path, token: str) -> bool:
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(f"{os.getpid()}\n{token}\n")
        return True

    @classmethod
    def _reclaim_if_stale(cls, path: Path) -> bool:
        guard = path.with_name(f"{path.name}{RECLAIM_SUFFIX}")
        if not cls._try_create(guard, "reclaim"):
            # A reclaimer that died mid-reclaim leaves its guard behind
            if _older_than(guard, UNOWNED_GRACE_SECONDS):
                guard.unlink(missing_ok=True)
            return False

        try:
            # Owner is read only while holding the guard
            owner = _read_owner(path)
            if owner is None:
                # Empty or half-written: the owner may still be writing it
                if not _older_than(path, UNOWNED_GRACE_SECONDS):
                    return False
            elif pid_alive(owner[0]):
                return False
            path.unlink(missing_ok=True)
            return True
        finally:
            guard.unlink(missing_ok=True)


def _older_than(path: Path, seconds: float) -> bool:
    try:
        return time.time() - path.stat().st_mtime >= seconds
    except FileNotFoundError:
        return False


def _read_owner(path: Path) -> tuple[int, str] | None:
    """Return (pid, token) recorded in a lock file, or None if unreadable."""
    try:
        lines = path.read_text().splitlines()
    except OSError:
        return None
    if not lines:
        return None
    try:
        pid = int(lines[0].strip())
    except ValueError:
        return None
    token = lines[1].strip() if len(lines) > 1 else ""
    return pid, token
