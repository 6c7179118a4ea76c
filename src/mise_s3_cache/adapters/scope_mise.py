"""Project scope adapter reading mise and asdf tool declarations."""

import logging
import re
import tomllib
from pathlib import Path
from typing import Any

from ..core.models import ToolVersionRef
from ..ports.scope import ScopePort
from ..ports.tool_manager import ToolManagerPort

logger = logging.getLogger(__name__)

MISE_FILES = (".mise.toml", "mise.toml")
TOOL_VERSIONS_FILE = ".tool-versions"

_TOML_TOOL_LINE = re.compile(r'^\s*"?([A-Za-z0-9_-]+)"?\s*=\s*"([^"]+)"')


def parse_mise_toml(path: Path) -> list[tuple[str, list[str]]]:
    """Return (tool, versions) pairs from the [tools] table of a mise config."""
    content = path.read_text()
    try:
        tools = tomllib.loads(content).get("tools", {})
    except tomllib.TOMLDecodeError as e:
        logger.debug("Falling back to line parsing for %s: %s", path, e)
        return _scan_tools_section(content)
    if not isinstance(tools, dict):
        return []

    result = []
    for tool, value in tools.items():
        versions = _toml_versions(value)
        if versions:
            result.append((str(tool), versions))
    return result


def _toml_versions(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [version for item in value for version in _toml_versions(item)]
    if isinstance(value, dict) and isinstance(value.get("version"), str):
        return [value["version"]]
    return []


def _scan_tools_section(content: str) -> list[tuple[str, list[str]]]:
    result = []
    in_tools = False
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("["):
            in_tools = stripped == "[tools]"
            continue
        if in_tools:
            match = _TOML_TOOL_LINE.match(stripped)
            if match:
                result.append((match.group(1), [match.group(2)]))
    return result


def parse_tool_versions(path: Path) -> list[tuple[str, list[str]]]:
    """Return (tool, versions) pairs from an asdf-style .tool-versions file."""
    result = []
    for line in path.read_text().splitlines():
        line = line.split("#", 1)[0].strip()
        parts = line.split()
        if len(parts) >= 2:
            result.append((parts[0], parts[1:]))
    return result


class MiseProjectScope(ScopePort):
    """Answers which tools the project around start_dir declares.

    Looks in start_dir and each parent up to the git root. In each directory
    the mise config is read before .tool-versions, and for duplicate tools the
    first declaration found wins.

    A version that no file names literally (``node = "20"`` against
    ``20.11.1``) still counts when the tool manager resolves it from one of
    those project files.
    """

    def __init__(
        self, start_dir: Path | None = None, tool_manager: ToolManagerPort | None = None
    ):
        self.start_dir = Path(start_dir or Path.cwd()).resolve()
        self.tool_manager = tool_manager

    def config_files(self) -> list[Path]:
        files = []
        current = self.start_dir
        while True:
            for name in (*MISE_FILES, TOOL_VERSIONS_FILE):
                candidate = current / name
                if candidate.is_file():
                    files.append(candidate)
            if (current / ".git").exists() or current.parent == current:
                return files
            current = current.parent

    def _declarations(self) -> list[tuple[str, list[str]]]:
        declarations = []
        for path in self.config_files():
            try:
                if path.name == TOOL_VERSIONS_FILE:
                    declarations.extend(parse_tool_versions(path))
                else:
                    declarations.extend(parse_mise_toml(path))
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Cannot read %s: %s", path, e)
        return declarations

    def is_declared(self, tool: str, version: str) -> bool:
        if any(name == tool and version in versions for name, versions in self._declarations()):
            return True
        return self._resolved_by_tool_manager(tool, version)

    def _resolved_by_tool_manager(self, tool: str, version: str) -> bool:
        if self.tool_manager is None:
            return False
        project_files = {path.resolve() for path in self.config_files()}
        if not project_files:
            return False
        for active in self.tool_manager.active_versions(self.start_dir):
            if active.tool != tool or active.version != version:
                continue
            # Versions from global mise config are not project tools
            if active.source is None or active.source.resolve() in project_files:
                return True
        return False

    def declared_tools(self) -> list[ToolVersionRef]:
        seen: dict[str, str] = {}
        for tool, versions in self._declarations():
            if tool not in seen:
                seen[tool] = versions[0]
        return [ToolVersionRef(tool, version) for tool, version in seen.items()]
