"""Metrics adapters."""

from ..ports.logger import LoggerPort
from ..ports.metrics import MetricsPort


class NoopMetricsAdapter(MetricsPort):
    """Metrics adapter that drops everything."""

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        pass

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass

    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass


class LoggingMetricsAdapter(MetricsPort):
    """Metrics adapter that writes every sample to the debug log."""

    def __init__(self, logger: LoggerPort):
        self.logger = logger

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        self.logger.debug("metric", type="counter", name=name, value=value, **(tags or {}))

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.logger.debug("metric", type="gauge", name=name, value=value, **(tags or {}))

    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.logger.debug(
            "metric", type="timing", name=name, value=round(value, 3), **(tags or {})
        )


def create_metrics(metrics_type: str, logger: LoggerPort) -> MetricsPort:
    """Build the metrics adapter named by configuration."""
    if metrics_type == "logging":
        return LoggingMetricsAdapter(logger)
    if metrics_type != "noop":
        logger.warning("Unknown metrics backend, using noop", metrics=metrics_type)
    return NoopMetricsAdapter()
