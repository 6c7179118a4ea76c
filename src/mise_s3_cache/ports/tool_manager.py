"""Tool manager port interface."""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(frozen=True)
class ActiveVersion:
    """A tool version the tool manager resolved for a directory."""

    tool: str
    version: str
    source: Path | None = None


class ToolManagerPort(Protocol):
    """Port for the tool manager (mise) whose installs are cached."""

    def version(self) -> str:
        """Version string of the tool manager, or "unknown"."""
        ...

    def install_path(self, tool: str, version: str) -> Path:
        """Directory where tool@version is (or would be) installed."""
        ...

    def install(self, tool: str, version: str) -> None:
        """Install tool@version. Raises RuntimeError on failure."""
        ...

    def active_versions(self, cwd: Path | None = None) -> list[ActiveVersion]:
        """Versions resolved for cwd, with the config file declaring each when known.

        Returns an empty list when the tool manager cannot answer.
        """
        ...
