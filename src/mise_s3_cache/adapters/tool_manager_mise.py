"""mise tool manager adapter."""

import json
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any

from ..ports.tool_manager import ActiveVersion, ToolManagerPort

DEFAULT_TIMEOUT = 600.0


def default_data_dir() -> Path:
    data_dir = os.environ.get("MISE_DATA_DIR")
    if data_dir:
        return Path(data_dir).expanduser()
    return Path.home() / ".local" / "share" / "mise"


class MiseToolManager(ToolManagerPort):
    """Runs the mise executable as a subprocess."""

    def __init__(self, executable: str = "mise", timeout: float = DEFAULT_TIMEOUT):
        self.executable = executable
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def _run(
        self, *args: str, timeout: float | None = None, cwd: Path | None = None
    ) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            [self.executable, *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout or self.timeout,
            check=False,
        )

    def version(self) -> str:
        try:
            result = self._run("version", timeout=10)
        except (OSError, subprocess.TimeoutExpired):
            return "unknown"
        output = result.stdout.strip()
        if result.returncode != 0 or not output:
            return "unknown"
        return output.splitlines()[0]

    def install_path(self, tool: str, version: str) -> Path:
        """Ask mise where tool@version lives; fall back to the default installs dir."""
        try:
            result = self._run("where", f"{tool}@{version}", timeout=30)
            if result.returncode == 0 and result.stdout.strip():
                return Path(result.stdout.strip())
        except (OSError, subprocess.TimeoutExpired):
            pass
        return default_data_dir() / "installs" / tool / version

    def install(self, tool: str, version: str) -> None:
        try:
            result = self._run("install", f"{tool}@{version}")
        except FileNotFoundError as e:
            raise RuntimeError(f"{self.executable} not found") from e
        except subprocess.TimeoutExpired as e:
            raise RuntimeError(
                f"mise install {tool}@{version} timed out after {self.timeout}s"
            ) from e
        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise RuntimeError(f"mise install {tool}@{version} failed: {detail}")

    def active_versions(self, cwd: Path | None = None) -> list[ActiveVersion]:
        """Versions mise resolves for cwd, from ``mise ls --current --json``."""
        try:
            result = self._run("ls", "--current", "--json", timeout=30, cwd=cwd)
        except (OSError, subprocess.TimeoutExpired):
            return []
        if result.returncode != 0:
            return []
        try:
            return parse_ls_json(json.loads(result.stdout))
        except ValueError:
            return []


def parse_ls_json(data: Any) -> list[ActiveVersion]:
    """Read both the tool-keyed mapping and the flat list form of ``mise ls --json``."""
    if isinstance(data, dict):
        entries = [
            (tool, entry)
            for tool, tool_entries in data.items()
            if isinstance(tool_entries, list)
            for entry in tool_entries
        ]
    elif isinstance(data, list):
        entries = [(None, entry) for entry in data]
    else:
        return []

    active = []
    for tool, entry in entries:
        if not isinstance(entry, dict):
            continue
        name = tool or entry.get("name")
        version = entry.get("version")
        if not isinstance(name, str) or not isinstance(version, str):
            continue
        source = entry.get("source")
        path = source.get("path") if isinstance(source, dict) else None
        active.append(ActiveVersion(name, version, Path(path) if isinstance(path, str) else None))
    return active
