"""
Logging setup for structlog.

Library code only calls ``structlog.get_logger``; applications (the CLI,
embedding services) call ``configure_logging`` once at startup.
"""

import logging
import sys

import structlog


def configure_logging(verbose: bool = False, json_logs: bool = False):
    """
    Configure structlog processors and the log level.

    Args:
        verbose: Emit debug events
        json_logs: Render events as JSON instead of console lines
    """
    level = logging.DEBUG if verbose else logging.INFO
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
