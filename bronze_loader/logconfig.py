"""
Structured logging setup for the Bronze Loader.

Logs go to stderr so that stdout carries only the load report.
"""

import logging
import sys

import structlog

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """
    Configure structlog.

    Args:
        level: Minimum log level name, one of LOG_LEVELS
        fmt: "console" for human-readable lines, "json" for log shippers
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        # Looked up per logger so a swapped sys.stderr is honoured
        logger_factory=lambda *_: structlog.PrintLogger(sys.stderr),
        cache_logger_on_first_use=False,
    )
