"""Stats ledger port interface."""

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..core.models import StatsRecord


class StatsPort(Protocol):
    """Port for the local usage-statistics ledger."""

    def record_restore(
        self,
        tool: str,
        version: str,
        hit: bool,
        status: str,
        duration: float = 0.0,
        size_bytes: int = 0,
    ) -> None:
        """Record a restore outcome (hit, miss or failure)."""
        ...

    def record_store(self, tool: str, version: str, status: str, size_bytes: int = 0) -> None:
        """Record a store outcome."""
        ...

    def load(self) -> "StatsRecord":
        """Read the current ledger."""
        ...
