# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
structlog setup for command-line runs.

Library code only calls structlog.get_logger(); the host application owns
the configuration. The CLI configures a level filter, ISO timestamps and
either a console renderer or one JSON object per line (for journald).
"""

import logging
import sys

import structlog

LOG_FORMATS = ("console", "json")


def configure_logging(level: str = "info", fmt: str = "console") -> None:
    """
    Configure structlog for the snapkeep CLI.

    Args:
        level: Minimum level name (debug, info, warning, error)
        fmt: 'console' for humans, 'json' for log collectors
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")
    if fmt not in LOG_FORMATS:
        raise ValueError(f"Unknown log format: {fmt}, expected one of {LOG_FORMATS}")

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if fmt == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
