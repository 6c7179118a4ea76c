"""Standard logging adapter."""

import logging
import sys
from pathlib import Path
from typing import Any

from ..ports.logger import LoggerPort

LOGGER_NAME = "mise_s3_cache"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class StdLoggerAdapter(LoggerPort):
    """Standard logging implementation of LoggerPort.

    Keyword arguments are appended to the message as ``key=value`` pairs so
    that hook output stays grep-able. Logs go to stderr, never stdout, to keep
    the tool manager's own output clean.
    """

    def __init__(
        self,
        name: str = LOGGER_NAME,
        level: str = "INFO",
        log_file: Path | None = None,
    ):
        """Initialize logger."""
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self.logger.propagate = False

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            self.logger.addHandler(handler)

        if log_file is not None and not any(
            isinstance(h, logging.FileHandler) for h in self.logger.handlers
        ):
            try:
                log_file.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_file)
                file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
                self.logger.addHandler(file_handler)
            except OSError as e:
                self.logger.warning(f"Cannot open log file {log_file}: {e}")

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message."""
        self._log(logging.ERROR, message, **kwargs)

    def log_operation(
        self,
        op: str,
        key: str,
        sizes: dict[str, int],
        durations: dict[str, float],
        cache_hit: bool = False,
    ) -> None:
        """Log structured operation data."""
        data: dict[str, Any] = {"op": op, "key": key, "cache_hit": cache_hit}
        data.update({f"size_{name}": size for name, size in sizes.items()})
        data.update({f"{name}_s": round(value, 3) for name, value in durations.items()})
        self.info(f"Operation: {op}", **data)

    def _log(self, level: int, message: str, **kwargs: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        if kwargs:
            details = " ".join(f"{k}={v}" for k, v in kwargs.items())
            message = f"{message} [{details}]"
        self.logger.log(level, message)
