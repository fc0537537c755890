# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
Library log level.

Logs go to stderr as JSON lines. stdout is left to the log forwarder, which
writes metric lines there. If the application configured structlog itself
its configuration is left untouched.
"""

from __future__ import annotations

import logging
import sys

import structlog

_configured_here = False


def configure_logging(debug: bool = False) -> None:
    """Set the library log level: errors only, or everything with ``debug``."""
    global _configured_here

    if structlog.is_configured() and not _configured_here:
        return

    level = logging.DEBUG if debug else logging.ERROR
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    _configured_here = True


def reset_logging() -> None:
    """Forget the library configuration (for testing)."""
    global _configured_here

    structlog.reset_defaults()
    _configured_here = False
