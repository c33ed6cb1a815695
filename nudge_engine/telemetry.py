"""Logging setup and metric emission helpers."""

from __future__ import annotations

import logging

_METRICS_LOGGER = logging.getLogger("nudge_engine.metrics")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for the engine processes."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=LOG_FORMAT)


def emit_metric(name: str, value: float = 1.0, **tags: object) -> None:
    """Emit a metric via logging for later aggregation."""
    _METRICS_LOGGER.info(
        "metric %s=%s",
        name,
        value,
        extra={"metric_name": name, "metric_value": value, "metric_tags": tags},
    )
