# Copyright 2024-2026 The ddlambda Authors
# SPDX-License-Identifier: Apache-2.0

"""
Per-invocation context and the process-wide current-context slot.

The host runtime processes one invocation at a time per process, so the slot
simply holds the most recent invocation: the wrapper overwrites it at the
start of every invocation and nothing else writes to it. Code that runs
detached from the invocation (or on a host that runs invocations
concurrently in one process) should hold on to the ``InvocationContext`` it
was given and use its methods instead of the global accessors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ddlambda.metrics.listener import MetricsListener

logger = structlog.get_logger(__name__)

_EMPTY_HEADERS: Mapping[str, str] = MappingProxyType({})


@dataclass
class InvocationContext:
    """Telemetry state for one invocation of the wrapped handler."""

    event: Any = None
    lambda_context: Any = None
    trace_headers: Mapping[str, str] = field(default_factory=lambda: _EMPTY_HEADERS)
    metrics_listener: MetricsListener | None = None

    def get_trace_headers(self) -> dict[str, str]:
        """Return a copy of this invocation's trace headers."""
        return dict(self.trace_headers)

    def distribution(self, name: str, value: float, *tags: str) -> None:
        """Record a distribution sample against this invocation."""
        if self.metrics_listener is None:
            logger.error("metrics.no_listener", metric=name)
            return
        self.metrics_listener.add_distribution(name, value, *tags)


class HandlerListener(ABC):
    """Lifecycle hooks run by the wrapper around each handler call."""

    @abstractmethod
    def handler_started(self, ctx: InvocationContext) -> None:
        """Called before the handler runs. May attach state to ``ctx``."""
        ...

    @abstractmethod
    def handler_finished(self, ctx: InvocationContext) -> None:
        """Called after the handler returns or raises."""
        ...

    def close(self) -> None:
        """Release resources held across invocations. Nothing by default."""
        return None


_current_context: InvocationContext | None = None


def get_current_context() -> InvocationContext | None:
    """Return the context of the most recently started invocation."""
    return _current_context


def set_current_context(ctx: InvocationContext | None) -> None:
    # Only the wrapper calls this.
    global _current_context
    _current_context = ctx
