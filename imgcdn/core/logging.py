from __future__ import annotations

import logging
from typing import Any

import structlog


def configure_logging(level: int | str = logging.INFO, *, renderer: str = "json") -> None:
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=level)
    final_processor = (
        structlog.dev.ConsoleRenderer() if renderer == "console" else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            final_processor,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def get_logger(**initial_values: Any) -> structlog.BoundLogger:
    return structlog.get_logger().bind(**initial_values)


__all__ = ["configure_logging", "get_logger"]
