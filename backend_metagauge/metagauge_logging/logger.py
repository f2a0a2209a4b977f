"""
Logging setup for sync runs.

Every record is a structlog event dict rendered as one JSON line on stdout
(LOG_FORMAT=json, the default) or as a console line otherwise. Records carry
event_type, level, logger and a UTC timestamp; sync code adds analysis_id
through bind_analysis() so one run can be filtered out of a shared stream.

This module imports nothing from backend_metagauge, which keeps it safe to
import from the config and database layers.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()


def _utc_timestamp(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    # callers may pass their own timestamp
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def _event_type(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Emit the positional event name under event_type."""
    event = event_dict.pop("event", None)
    if event is not None:
        event_dict.setdefault("event_type", event)
    return event_dict


def _renderer() -> Any:
    if LOG_FORMAT == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _utc_timestamp,
            _event_type,
            _renderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Module logger; name is bound as the logger key.

    Usage: get_logger(__name__).info("rpc_retry", url=url, attempt=2)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_analysis(analysis_id: str, name: str = "backend_metagauge") -> structlog.BoundLogger:
    """get_logger(name) with analysis_id attached to every event."""
    return get_logger(name).bind(analysis_id=analysis_id)
