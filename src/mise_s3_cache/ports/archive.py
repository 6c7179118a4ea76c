"""Archive port interface."""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(frozen=True)
class PackedArchive:
    """Compressed archive bytes with their checksum."""

    data: bytes
    checksum: str

    @property
    def size(self) -> int:
        return len(self.data)


class ArchivePort(Protocol):
    """Port for packing and unpacking install directories."""

    def pack(self, source_dir: Path, root_name: str | None = None) -> PackedArchive:
        """Archive source_dir under a single top-level directory."""
        ...

    def unpack(self, data: bytes, dest_dir: Path) -> Path:
        """Extract data so that dest_dir becomes the archive's top-level directory."""
        ...
