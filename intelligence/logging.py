"""Structured logging configuration (structlog)."""

from __future__ import annotations

import logging

import structlog


def configure_logging(debug: bool = False) -> None:
    """Configure structlog for human-readable console output.

    Call once at process startup. With debug=True every stream event and
    reducer step is logged; otherwise only lifecycle changes and problems.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if debug else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
