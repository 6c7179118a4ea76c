"""tar.gz archive adapter."""

import io
import os
import shutil
import tarfile
import tempfile
import zlib
from pathlib import Path, PurePosixPath

from ..core.errors import CodecError, ExtractionError
from ..ports.archive import ArchivePort, PackedArchive
from ..ports.hash import HashPort


class TarGzArchiveAdapter(ArchivePort):
    """Packs install directories as gzip-compressed tarballs.

    The archive holds a single top-level directory. Unpacking strips it, so
    the destination directory itself becomes the install root.
    """

    def __init__(self, hasher: HashPort, compresslevel: int = 6):
        self.hasher = hasher
        self.compresslevel = compresslevel

    def pack(self, source_dir: Path, root_name: str | None = None) -> PackedArchive:
        """Archive source_dir and checksum the produced bytes."""
        source_dir = Path(source_dir)
        if not source_dir.is_dir():
            raise CodecError(f"Source is not a directory: {source_dir}")

        buffer = io.BytesIO()
        try:
            with tarfile.open(
                fileobj=buffer, mode="w:gz", compresslevel=self.compresslevel
            ) as tar:
                tar.add(source_dir, arcname=root_name or source_dir.name or "root")
        except (OSError, tarfile.TarError) as e:
            raise CodecError(f"Failed to archive {source_dir}: {e}") from e

        data = buffer.getvalue()
        return PackedArchive(data=data, checksum=self.hasher.sha256_bytes(data))

    def unpack(self, data: bytes, dest_dir: Path) -> Path:
        """Extract into dest_dir, all or nothing."""
        dest_dir = Path(dest_dir)
        try:
            dest_dir.parent.mkdir(parents=True, exist_ok=True)
            staging = Path(
                tempfile.mkdtemp(prefix=f".{dest_dir.name}.partial-", dir=dest_dir.parent)
            )
        except OSError as e:
            raise ExtractionError(f"Cannot prepare {dest_dir}: {e}") from e

        try:
            root = self._extract(data, staging)
            self._promote(root, dest_dir)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        return dest_dir

    def _extract(self, data: bytes, staging: Path) -> Path:
        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
                members = tar.getmembers()
                root_name = self._check_members(members)
                tar.extractall(staging, members=members, filter="data")
        except CodecError:
            raise
        except (OSError, EOFError, zlib.error, tarfile.TarError) as e:
            raise ExtractionError(f"Failed to extract archive: {e}") from e

        root = staging / root_name
        if not root.is_dir():
            raise ExtractionError(f"Archive root {root_name!r} is not a directory")
        return root

    @staticmethod
    def _check_members(members: list[tarfile.TarInfo]) -> str:
        """Validate entries and return the name of the single top-level directory."""
        if not members:
            raise CodecError("Archive is empty")

        roots = set()
        for member in members:
            path = PurePosixPath(member.name)
            if path.is_absolute() or ".." in path.parts:
                raise CodecError(f"Unsafe path in archive: {member.name}")
            if member.isdev():
                raise CodecError(f"Unsupported entry type in archive: {member.name}")
            if member.islnk() and ".." in PurePosixPath(member.linkname).parts:
                raise CodecError(f"Unsafe hard link in archive: {member.name}")
            parts = [p for p in path.parts if p != "."]
            if parts:
                roots.add(parts[0])

        if len(roots) != 1:
            raise CodecError(f"Archive must have one top-level directory, found {len(roots)}")
        return roots.pop()

    @staticmethod
    def _promote(root: Path, dest_dir: Path) -> None:
        """Swap the extracted tree into place, restoring the old tree on failure."""
        backup = None
        if dest_dir.exists() or dest_dir.is_symlink():
            backup = dest_dir.with_name(f".{dest_dir.name}.old-{os.getpid()}")
            try:
                if backup.exists():
                    shutil.rmtree(backup)
                os.replace(dest_dir, backup)
            except OSError as e:
                raise ExtractionError(f"Cannot replace {dest_dir}: {e}") from e

        try:
            os.replace(root, dest_dir)
        except OSError as e:
            if backup is not None:
                try:
                    os.replace(backup, dest_dir)
                except OSError as rollback_error:
                    raise ExtractionError(
                        f"Cannot move extracted tree to {dest_dir}: {e}; "
                        f"previous install left at {backup}: {rollback_error}"
                    ) from e
            raise ExtractionError(f"Cannot move extracted tree to {dest_dir}: {e}") from e

        if backup is not None:
            if backup.is_dir() and not backup.is_symlink():
                shutil.rmtree(backup, ignore_errors=True)
            else:
                backup.unlink(missing_ok=True)
