"""Observability: logging and counters for the broker."""

from via.observability.logger import get_logger
from via.observability.metrics import Metrics

__all__ = ["get_logger", "Metrics"]
