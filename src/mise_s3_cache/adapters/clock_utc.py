"""UTC clock adapter."""

import time
from datetime import UTC, datetime

from ..ports.clock import ClockPort


class UtcClockAdapter(ClockPort):
    """UTC implementation of ClockPort."""

    def now(self) -> datetime:
        """Get current UTC time."""
        return datetime.now(UTC)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)
