# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
ddlambda: Datadog metrics and trace propagation for AWS Lambda handlers.

Wrap the handler once, then record metrics and forward trace context from
anywhere in its call graph.

Example:
    >>> import ddlambda
    >>>
    >>> @ddlambda.datadog_lambda()
    ... def handler(event, context):
    ...     ddlambda.distribution("orders.placed", 1, "env:prod")
    ...     req = httpx.Request("GET", "https://inventory.internal/stock")
    ...     ddlambda.add_trace_headers(req)
    ...     return {"statusCode": 200}

The helpers find the running invocation through a process-wide slot that the
wrapper overwrites at the start of each invocation. This assumes the runtime
processes one invocation per process at a time. Pass ``context=`` (the
InvocationContext returned by :func:`get_context`) to pin calls to a specific
invocation instead.
"""

from __future__ import annotations

from typing import Any

import structlog

from ddlambda._config import Config
from ddlambda.invocation import InvocationContext, get_current_context
from ddlambda.trace.context import propagate
from ddlambda.wrapper import datadog_lambda, wrap_handler

logger = structlog.get_logger(__name__)

__version__ = "0.3.0"
__all__ = [
    # Wrapping
    "wrap_handler",
    "datadog_lambda",
    # Metrics
    "distribution",
    # Tracing
    "get_trace_headers",
    "add_trace_headers",
    # Context
    "get_context",
    "InvocationContext",
    # Config
    "Config",
    # Version
    "__version__",
]


def get_context() -> InvocationContext | None:
    """
    Return the most recently started invocation's context.

    Only use this if you aren't passing the context through your call
    hierarchy yourself.
    """
    return get_current_context()


def get_trace_headers(context: InvocationContext | None = None) -> dict[str, str]:
    """Return the Datadog trace headers of the invocation, or an empty dict."""
    ctx = context or get_current_context()
    if ctx is None:
        return {}
    return ctx.get_trace_headers()


def add_trace_headers(request: Any, context: InvocationContext | None = None) -> None:
    """
    Add the invocation's trace headers to an outbound HTTP request.

    ``request`` may be a headers dict or any request object with a mutable
    ``headers`` mapping (``httpx.Request``, ``requests.PreparedRequest``).
    """
    try:
        propagate(get_trace_headers(context), request)
    except TypeError as e:
        logger.error("trace.propagate_failed", error=str(e))


def distribution(
    name: str,
    value: float,
    *tags: str,
    context: InvocationContext | None = None,
) -> None:
    """
    Record a distribution metric sample.

    Outside a wrapped invocation this logs an error and does nothing; it
    never raises into the caller.
    """
    ctx = context or get_current_context()
    if ctx is None:
        logger.error("metrics.no_current_context", metric=name)
        return
    ctx.distribution(name, value, *tags)
