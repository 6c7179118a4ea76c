"""SHA256 hash adapter."""

import hashlib

from ..ports.hash import HashPort


class Sha256Adapter(HashPort):
    """SHA256 implementation of HashPort."""

    def sha256_bytes(self, data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()
