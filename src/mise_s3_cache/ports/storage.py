"""Storage port interface."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol


@dataclass
class ObjectHead:
    """S3 object metadata."""

    key: str
    size: int
    etag: str
    last_modified: datetime
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class ObjectInfo:
    """One entry of a listing."""

    key: str
    size: int
    last_modified: datetime


class StoragePort(Protocol):
    """Port for object storage operations.

    Keys are relative to the configured bucket. Implementations do not retry;
    transient failures surface as StorageUnavailableError.
    """

    def head(self, key: str) -> ObjectHead | None:
        """Get object metadata, or None if the object does not exist."""
        ...

    def exists(self, key: str) -> bool:
        """Check whether an object exists."""
        ...

    def get(self, key: str) -> bytes:
        """Read an object. Raises NotFoundError if missing."""
        ...

    def put(
        self,
        key: str,
        body: bytes,
        metadata: dict[str, str] | None = None,
        content_type: str | None = None,
    ) -> None:
        """Write an object."""
        ...

    def list(self, prefix: str) -> Iterator[ObjectInfo]:
        """List objects under prefix."""
        ...

    def delete(self, key: str) -> None:
        """Delete an object."""
        ...

    def delete_older_than(self, prefix: str, cutoff: datetime) -> list[str]:
        """Delete objects under prefix last modified before cutoff; return deleted keys."""
        ...
