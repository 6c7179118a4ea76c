"""Hash port interface."""

from typing import Protocol


class HashPort(Protocol):
    """Port for hash operations."""

    def sha256_bytes(self, data: bytes) -> str:
        """Compute SHA256 hex digest of in-memory bytes."""
        ...
