"""Lock port interface."""

from pathlib import Path
from types import TracebackType
from typing import Protocol


class LockHandle(Protocol):
    """Exclusive ownership of a named lock; released on context exit."""

    name: str

    def release(self) -> None:
        """Release the lock. Safe to call more than once."""
        ...

    def __enter__(self) -> "LockHandle": ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...


class LockPort(Protocol):
    """Port for cross-process mutual exclusion."""

    def acquire(self, name: str, timeout: float) -> LockHandle:
        """Acquire the named lock, waiting up to timeout seconds.

        Raises LockTimeoutError when the lock stays held by a live owner.
        """
        ...

    def cleanup_stale(self) -> list[Path]:
        """Remove locks whose owners are gone and return their paths."""
        ...
