"""Structured logging for MetaGauge modules."""

from backend_metagauge.metagauge_logging.logger import bind_analysis, get_logger

__all__ = ["bind_analysis", "get_logger"]
