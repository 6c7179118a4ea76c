"""Project scope port interface."""

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..core.models import ToolVersionRef


class ScopePort(Protocol):
    """Port answering which tool versions the current project declares."""

    def is_declared(self, tool: str, version: str) -> bool:
        """Check whether tool@version is declared by the project."""
        ...

    def declared_tools(self) -> list["ToolVersionRef"]:
        """List every (tool, version) the project declares."""
        ...
