"""Structured logging configuration for crossbus.

Bus modules log through ``get_logger(__name__)``. Applications decide the
output once, at startup, with ``configure_logging`` or
``configure_from_config``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from crossbus.config import BusConfig

LOG_FILE_NAME = "crossbus.log"


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines instead of console output
        log_file: Append to this file instead of stderr
    """
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        format="%(message)s",
        filename=str(log_file) if log_file is not None else None,
        level=getattr(logging, level.upper()),
        force=True,
    )

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=log_file is None)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def configure_from_config(config: BusConfig, log_dir: Path | None = None) -> None:
    """Configure logging from ``config.log_level`` and ``config.json_logs``.

    Args:
        config: Bus configuration
        log_dir: Write ``crossbus.log`` here instead of stderr
    """
    configure_logging(
        level=config.log_level,
        json_output=config.json_logs,
        log_file=log_dir / LOG_FILE_NAME if log_dir is not None else None,
    )
